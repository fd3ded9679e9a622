# hubmux/cli.py
"""
``hubmux-watch``: log every message on a hub topic that passes the checks.

    hubmux-watch --hub tcp://hub.fedoraproject.org:9940 \
        --topic org.fedoraproject.prod.buildsys.build.state.change \
        --check owner=ralph --check new=1
"""
from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Sequence

from hubmux.contracts.message import Message
from hubmux.core.checks import FieldCheck
from hubmux.core.config import settings
from hubmux.core.logging import configure_logging
from hubmux.core.subscription.registry import ConnectionRegistry
from hubmux.exceptions import HubConnectionError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hubmux-watch",
        description="Watch a hub topic and log matching messages.",
    )
    parser.add_argument("--hub", required=True, help="Hub address, e.g. tcp://host:9940")
    parser.add_argument("--topic", required=True, help="Exact topic to match")
    parser.add_argument(
        "--check",
        action="append",
        default=[],
        type=FieldCheck.parse,
        metavar="FIELD=REGEX",
        help="Body field check, may be repeated",
    )
    parser.add_argument("--log-level", default=settings.log_level, help="Log level")
    parser.add_argument(
        "--text-logs",
        action="store_true",
        default=not settings.log_json,
        help="Plain text log lines instead of JSON",
    )
    return parser


def _log_message(message: Message) -> None:
    logger.info(
        "Matched message on '%s'",
        message.topic,
        extra={"msg_id": message.msg_id, "timestamp": message.timestamp, "body": message.body},
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, json=not args.text_logs)

    done = threading.Event()

    def _shutdown(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        done.set()

    previous = {sig: signal.signal(sig, _shutdown) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        return _watch(args, done)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _watch(args: argparse.Namespace, done: threading.Event) -> int:
    with ConnectionRegistry() as registry:
        try:
            registration = registry.attach(
                args.hub,
                args.topic,
                on_match=_log_message,
                predicates=args.check,
            )
        except HubConnectionError as exc:
            logger.error("%s", exc)
            return 1

        logger.info(
            "Watching '%s' on %s with %d check(s)",
            args.topic,
            args.hub,
            len(args.check),
        )
        done.wait()
        registry.detach(registration)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
