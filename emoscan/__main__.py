"""Run the controller with uvicorn: ``python -m emoscan``."""
from __future__ import annotations

import uvicorn

from .config import get_settings


def main() -> None:
    settings = get_settings()
    # logging is configured by emoscan.main at import
    uvicorn.run(
        "emoscan.main:app",
        host=settings.controller_host,
        port=settings.controller_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
