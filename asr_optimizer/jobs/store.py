from __future__ import annotations

import hashlib
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from asr_optimizer.database.client import RESULTS_TABLE, connect, init_tables
from asr_optimizer.errors import NotFoundError
from asr_optimizer.jobs.write_queue import WriteQueue

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"

PROCESSING_PLACEHOLDER = {"status": "processing"}


def _escape_sql(value: str) -> str:
    return str(value).replace("'", "''")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)
        except ValueError:
            pass
    return datetime.fromtimestamp(0, tz=timezone.utc)


def _safe_json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _safe_json_loads(value: Any, default: Any) -> Any:
    if not isinstance(value, str) or not value.strip():
        return default
    try:
        return json.loads(value)
    except ValueError:
        return default


def record_id(user_id: str, project_id: str) -> str:
    key = json.dumps([str(user_id), str(project_id)])
    return hashlib.sha1(key.encode("utf-8")).hexdigest()


def public_record(row: dict) -> dict:
    """Job row as returned by the API, with ``result`` decoded back into JSON."""
    return {
        "id": str(row.get("id") or ""),
        "user_id": str(row.get("user_id") or ""),
        "project_id": str(row.get("project_id") or ""),
        "status": str(row.get("status") or ""),
        "result": _safe_json_loads(row.get("result_json"), default={}),
        "run_id": str(row.get("run_id") or ""),
        "created_at": _to_dt(row.get("created_at")).isoformat(),
        "updated_at": _to_dt(row.get("updated_at")).isoformat(),
    }


class JobStore:
    """
    One row per (user id, project id). Every write is a full replacement of
    that row, applied as one `update` (or one `add` for a new key) through a
    single write queue so no two writes interleave.
    """

    def __init__(self, db, write_queue: Optional[WriteQueue] = None):
        self._db = db
        self._writes = write_queue or WriteQueue()

    @classmethod
    def open(cls, db_path: str) -> "JobStore":
        db = connect(db_path)
        init_tables(db)
        return cls(db)

    async def start(self):
        await self._writes.start()

    async def close(self):
        await self._writes.stop()

    def _table(self):
        return self._db.open_table(RESULTS_TABLE)

    def _current_row(self, tbl, rid: str) -> Optional[dict]:
        rows = tbl.search().where(f"id = '{_escape_sql(rid)}'").limit(1).to_list()
        return rows[0] if rows else None

    def _upsert(self, tbl, row: dict, current: Optional[dict]):
        # Existing rows are updated in place so every write is a single commit.
        if current is None:
            tbl.add([row])
            return
        values = {k: v for k, v in row.items() if k != "id"}
        tbl.update(where=f"id = '{_escape_sql(row['id'])}'", values=values)

    async def seed(self, user_id: str, project_id: str) -> str:
        """Insert or overwrite the record as pending. Returns the new run id."""
        run_id = str(uuid.uuid4())
        now = _now()
        row = {
            "id": record_id(user_id, project_id),
            "user_id": user_id,
            "project_id": project_id,
            "status": STATUS_PENDING,
            "result_json": _safe_json_dumps(PROCESSING_PLACEHOLDER),
            "run_id": run_id,
            "created_at": now,
            "updated_at": now,
        }

        async def _write_op():
            tbl = self._table()
            self._upsert(tbl, row, self._current_row(tbl, row["id"]))

        await self._writes.submit(_write_op)
        logger.info(f"Seeded pending job user={user_id} project={project_id} run={run_id}")
        return run_id

    async def _finish(
        self,
        user_id: str,
        project_id: str,
        status: str,
        result: Any,
        run_id: Optional[str],
    ) -> bool:
        rid = record_id(user_id, project_id)
        now = _now()

        async def _write_op():
            tbl = self._table()
            current = self._current_row(tbl, rid)
            if run_id is not None:
                current_run = str((current or {}).get("run_id") or "")
                if current_run != run_id:
                    logger.warning(
                        f"Skipping {status} write for user={user_id} project={project_id}: "
                        f"run {run_id} superseded by {current_run or 'nothing'}"
                    )
                    return False
            self._upsert(
                tbl,
                {
                    "id": rid,
                    "user_id": user_id,
                    "project_id": project_id,
                    "status": status,
                    "result_json": _safe_json_dumps(result),
                    "run_id": run_id or str((current or {}).get("run_id") or ""),
                    "created_at": _to_dt(current.get("created_at")) if current else now,
                    "updated_at": now,
                },
                current,
            )
            return True

        return await self._writes.submit(_write_op)

    async def complete(
        self,
        user_id: str,
        project_id: str,
        recommendation: dict,
        run_id: Optional[str] = None,
    ) -> bool:
        return await self._finish(user_id, project_id, STATUS_COMPLETED, recommendation, run_id)

    async def fail(
        self,
        user_id: str,
        project_id: str,
        error_message: str,
        run_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> bool:
        payload = {"error": str(error_message or "Unknown error occurred")}
        if details:
            payload.update({k: v for k, v in details.items() if k != "error"})
        return await self._finish(user_id, project_id, STATUS_ERROR, payload, run_id)

    def get(self, user_id: str, project_id: str) -> dict:
        row = self._current_row(self._table(), record_id(user_id, project_id))
        if row is None:
            raise NotFoundError("No results found")
        return row

    def latest_for_user(self, user_id: str) -> dict:
        rows = (
            self._table()
            .search()
            .where(f"user_id = '{_escape_sql(user_id)}'")
            .limit(1000)
            .to_list()
        )
        if not rows:
            raise NotFoundError("No results found")
        rows.sort(key=lambda r: _to_dt(r.get("updated_at")), reverse=True)
        return rows[0]
