# localfinder/__main__.py
"""Run the places API: python -m localfinder"""
from __future__ import annotations

import uvicorn

from localfinder.core.config import get_settings


def main() -> None:
    s = get_settings()
    uvicorn.run("localfinder.main:app", host=s.HOST, port=s.PORT, log_config=None)


if __name__ == "__main__":
    main()
