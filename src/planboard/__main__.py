"""Module entrypoint for ``python -m planboard``."""

from __future__ import annotations

from planboard.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
