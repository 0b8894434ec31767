"""Module entrypoint for `python -m flightcov`."""

from __future__ import annotations

from flightcov.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
