import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from asr_optimizer import __version__
from asr_optimizer.config import load_config, resolve_db_path
from asr_optimizer.errors import ConfigError, OptimizerError
from asr_optimizer.jobs.pipeline import OptimizationRunner
from asr_optimizer.jobs.store import JobStore
from asr_optimizer.routers import optimize

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    for err in exc.errors():
        if err.get("type") == "json_invalid":
            return "Request body must be valid JSON"
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        if loc:
            return f"Invalid request field '{loc}': {err.get('msg')}"
    return "Invalid request body"


def create_app(
    *,
    store: Optional[JobStore] = None,
    runner: Optional[OptimizationRunner] = None,
    db_path: Optional[str] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        job_store = store or JobStore.open(db_path or resolve_db_path(load_config()))
        job_runner = runner or OptimizationRunner(job_store)
        await job_store.start()
        app.state.store = job_store
        app.state.runner = job_runner
        logger.info("ASR optimizer started")
        try:
            yield
        finally:
            await job_runner.shutdown()
            await job_store.close()
            logger.info("ASR optimizer stopped")

    app = FastAPI(title="ASR Optimizer API", version=__version__, lifespan=lifespan)

    @app.exception_handler(OptimizerError)
    async def optimizer_error_handler(request: Request, exc: OptimizerError):
        if isinstance(exc, ConfigError):
            logger.error(
                f"Configuration error on {request.url.path}: {exc.message} (config_key={exc.config_key})"
            )
            return PlainTextResponse(exc.message, status_code=exc.status_code)
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        message = _validation_message(exc)
        logger.info(f"Request error on {request.url.path}: {message}")
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        # Unknown path and wrong method look the same to callers.
        if exc.status_code in (404, 405):
            return PlainTextResponse("Not Found", status_code=404)
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    app.include_router(optimize.router)

    @app.get("/health")
    async def health(request: Request):
        runner_state = getattr(request.app.state, "runner", None)
        return {
            "status": "ok",
            "version": __version__,
            "jobs_in_flight": runner_state.in_flight if runner_state is not None else 0,
        }

    return app


app = create_app()
