"""Allow ``python -m imagegen``."""

from imagegen.cli import main

raise SystemExit(main())
