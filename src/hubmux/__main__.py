from hubmux.cli import main

raise SystemExit(main())
