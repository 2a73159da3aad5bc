"""Installed `codepulse` command.

The backend modules import each other by bare name, so they are loaded
from their own directory rather than as a package.
"""

import asyncio
import importlib.util
import os
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).parent / "codepulse" / "backend"


def _load_backend_cli():
    sys.path.insert(0, str(BACKEND_DIR))
    # .env and the relative DB_PATH resolve against the backend directory
    os.chdir(BACKEND_DIR)
    spec = importlib.util.spec_from_file_location("codepulse_backend_cli", BACKEND_DIR / "__main__.py")
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load CLI from {BACKEND_DIR}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def main() -> None:
    cli = _load_backend_cli()
    sys.exit(asyncio.run(cli.main()))


if __name__ == "__main__":
    main()
