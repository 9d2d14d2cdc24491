"""``python -m cctv_recorder``: serve the API with uvicorn."""
from __future__ import annotations

import uvicorn

from .config_io import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "cctv_recorder.main:app",
        host=settings.app_host,
        port=settings.app_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
