from __future__ import annotations

class HubmuxError(Exception):
    pass

class HubConnectionError(HubmuxError):
    pass

class ConnectionStateError(HubmuxError, RuntimeError):
    pass
