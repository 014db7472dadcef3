"""Module executed when running ``python -m vetro``."""

from __future__ import annotations

import sys

from .cli import main


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    sys.exit(main())
