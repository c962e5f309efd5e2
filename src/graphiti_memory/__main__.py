"""Entry point for ``python -m graphiti_memory``."""

from __future__ import annotations

import sys


def main() -> None:
    from graphiti_memory.cli import dispatch
    sys.exit(dispatch(sys.argv[1:]))


if __name__ == "__main__":
    main()
