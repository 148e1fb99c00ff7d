"""ASGI entrypoint for running the Page Watch API with Uvicorn."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Ensure the src directory is on the Python path so the pagewatch package can be imported
SRC_PATH = Path(__file__).resolve().parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from pagewatch.api.app import create_app  # noqa: E402  (import after path setup)

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

app = create_app()

__all__ = ("app",)
