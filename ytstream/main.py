import os
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ytstream.api import download, formats, health, info
from ytstream.config.settings import CONFIG_PATH, config
from ytstream.core.errors import (
    ExtractionError,
    FormatNotFoundError,
    InvalidVideoIdError,
    PlayabilityError,
    ProtocolError,
    RequestError,
    ResolutionError,
    ScriptExecutionError,
    YtStreamError,
)
from ytstream.core.logging import log_error, setup_logging
from ytstream.core.state import state
from ytstream.infra.http import close_http_client
from ytstream.infra import sandbox
from ytstream.infra.redis import close_redis, init_redis

ERROR_STATUS = (
    (PlayabilityError, 403),
    (InvalidVideoIdError, 400),
    (FormatNotFoundError, 404),
    (ResolutionError, 502),
    (ProtocolError, 502),
    (RequestError, 502),
    (ExtractionError, 502),
    (ScriptExecutionError, 502),
)

app = FastAPI(
    title=config.api.title,
    description=config.api.description,
    version=config.api.version,
    docs_url="/docs" if config.api.debug else None,
    redoc_url=None
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(health.router, tags=["Health"])
app.include_router(info.router, tags=["Info"])
app.include_router(formats.router, tags=["Formats"])
app.include_router(download.router, tags=["Download"])


@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    request.state.request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    return response


@app.exception_handler(YtStreamError)
async def ytstream_error_handler(request: Request, exc: YtStreamError):
    status_code = next((status for cls, status in ERROR_STATUS if isinstance(exc, cls)), 500)
    log_error(request, f"{type(exc).__name__}: {exc}")

    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, PlayabilityError):
        content["status"] = exc.status
    if isinstance(exc, RequestError) and exc.status_code:
        content["upstream_status"] = exc.status_code
    return JSONResponse(status_code=status_code, content=content)


@app.on_event("startup")
async def startup_event():
    setup_logging()

    # Only materialize a config file when a location was given explicitly
    if os.getenv("CONFIG_PATH") and not os.path.exists(CONFIG_PATH):
        config_dir = os.path.dirname(CONFIG_PATH)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)
        config.save_to_file(CONFIG_PATH)

    state.redis = await init_redis()


@app.on_event("shutdown")
async def shutdown_event():
    await close_http_client()
    await close_redis()
    sandbox.shutdown()
