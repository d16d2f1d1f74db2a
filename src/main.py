"""`python -m main` desde `src/`, sin instalar el paquete."""

from __future__ import annotations

import sys

from cli.main import run

if __name__ == "__main__":
    # Las tablas Rich usan símbolos fuera de cp1252.
    if sys.platform == "win32":
        sys.stdout.reconfigure(encoding="utf-8")
        sys.stderr.reconfigure(encoding="utf-8")
    run()
