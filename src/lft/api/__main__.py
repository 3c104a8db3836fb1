# src/lft/api/__main__.py
from __future__ import annotations

import os

import uvicorn

from lft.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so LFT_* vars exist before anything reads them.
    load_dotenv_if_present()

    from lft.api.app import create_app
    from lft.logging_utils import configure_structured_logging

    configure_structured_logging()

    host = os.getenv("LFT_API_HOST", "127.0.0.1")
    port = int(os.getenv("LFT_API_PORT", "8080"))

    uvicorn.run(create_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
