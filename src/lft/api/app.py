from __future__ import annotations

import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lft.api.errors import ApiError
from lft.api.request_logging import RequestLogMiddleware
from lft.api.routes import router


def create_app(*, checkpoint_path: Optional[str] = None, manifest_path: Optional[str] = None) -> FastAPI:
    """Create the read-only audit API.

    Paths default to LFT_CHECKPOINT_PATH / LFT_MANIFEST_PATH. The API never
    writes to the checkpoint and never talks to the ledger.
    """
    mode = os.environ.get("LFT_MODE", "prod").strip().lower()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(title="LFT Genesis Audit API", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="LFT Genesis Audit API")

    app.state.checkpoint_path = checkpoint_path or os.environ.get("LFT_CHECKPOINT_PATH", "./data/genesis.db")
    app.state.manifest_path = manifest_path or os.environ.get(
        "LFT_MANIFEST_PATH", "./data/lft-genesis-manifest.json"
    )
    # opened lazily by the routes once the file exists
    app.state.checkpoint = None

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_json())

    app.add_middleware(RequestLogMiddleware)
    app.include_router(router)
    return app
