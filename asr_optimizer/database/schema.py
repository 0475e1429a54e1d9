from datetime import datetime

from lancedb.pydantic import LanceModel


class OptimizationResult(LanceModel):
    id: str  # derived from user_id + project_id, one row per pair
    user_id: str
    project_id: str
    status: str  # pending | completed | error
    result_json: str
    run_id: str
    created_at: datetime
    updated_at: datetime
