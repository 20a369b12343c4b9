#!/usr/bin/env python3
"""
Start the scheduler API and web UI.
Run with: python run.py
Or: uvicorn todo_scheduler.main:app --port 7540
"""
from __future__ import annotations

import logging
import sys

import uvicorn

from todo_scheduler.config import load_settings


def main() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s:%(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger(__name__).info("open http://localhost:%d", settings.port)
    uvicorn.run(
        "todo_scheduler.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
