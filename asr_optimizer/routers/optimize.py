import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from asr_optimizer.config import load_config, resolve_anthropic_runtime
from asr_optimizer.errors import ConfigError, ValidationError
from asr_optimizer.jobs.store import public_record
from asr_optimizer.utils.identifiers import format_user_id

router = APIRouter(tags=["optimization"])
logger = logging.getLogger(__name__)


class OptimizePayload(BaseModel):
    projectID: Optional[str] = None
    userID: Optional[str] = None
    vfApiKey: Optional[str] = None
    splitByLaunch: Optional[bool] = None


@router.post("/optimize", status_code=202)
async def optimize(payload: OptimizePayload, request: Request):
    logger.info("Received POST request to /optimize")
    if not payload.projectID or not payload.userID or not payload.vfApiKey:
        raise ValidationError("projectID, userID, and vfApiKey are required in request body")

    cfg = load_config()
    if not resolve_anthropic_runtime(cfg)["api_key"]:
        raise ConfigError("ANTHROPIC_API_KEY environment variable is required", config_key="anthropic.api_key")

    split_by_launch = payload.splitByLaunch
    if split_by_launch is None:
        split_by_launch = bool(cfg.get("optimization", {}).get("split_by_launch", True))

    user_id = format_user_id(payload.userID)
    logger.info(f"Processing request for userID: {user_id}")

    store = request.app.state.store
    runner = request.app.state.runner
    run_id = await store.seed(user_id, payload.projectID)
    runner.submit(
        user_id=user_id,
        project_id=payload.projectID,
        api_key=payload.vfApiKey,
        split_by_launch=split_by_launch,
        run_id=run_id,
    )

    return JSONResponse(
        status_code=202,
        content={"message": "Optimization started", "userID": user_id},
    )


@router.get("/results")
async def get_results(request: Request, userID: Optional[str] = None, projectID: Optional[str] = None):
    if not userID:
        raise ValidationError("userID is required as a query parameter")

    user_id = format_user_id(userID)
    logger.info(f"Fetching results for userID: {user_id}")

    store = request.app.state.store
    if projectID:
        row = store.get(user_id, projectID)
    else:
        row = store.latest_for_user(user_id)
    return public_record(row)
