"""Module entrypoint for `python -m compilemw`."""

from __future__ import annotations

from compilemw.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
