"""Module entrypoint for ``python -m scrypture``."""

from __future__ import annotations

from scrypture.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
