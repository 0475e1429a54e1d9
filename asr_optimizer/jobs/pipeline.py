from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from asr_optimizer.analysis.recommender import recommend
from asr_optimizer.errors import OptimizerError, ParseError
from asr_optimizer.jobs.store import JobStore
from asr_optimizer.transcripts.fetcher import fetch_transcript
from asr_optimizer.transcripts.segmenter import process_transcripts

logger = logging.getLogger(__name__)

_RAW_OUTPUT_LIMIT = 4000


async def run_optimization(
    store: JobStore,
    *,
    user_id: str,
    project_id: str,
    api_key: str,
    split_by_launch: bool = True,
    run_id: Optional[str] = None,
    fetch: Callable[..., Awaitable[list]] = fetch_transcript,
    analyze: Callable[..., Awaitable[Any]] = recommend,
) -> bool:
    """
    Fetch -> segment -> recommend, then write the terminal job state.

    Never raises for pipeline failures: every error becomes an ``error``
    record. Returns True when a recommendation was stored.
    """
    start = time.monotonic()
    try:
        entries = await fetch(project_id, user_id, api_key)
        processed = process_transcripts(entries, split_by_launch=split_by_launch)
        recommendation = await analyze(processed)
        payload = recommendation.model_dump() if hasattr(recommendation, "model_dump") else dict(recommendation)
        await store.complete(user_id, project_id, payload, run_id=run_id)
        logger.info(
            f"Optimization completed user={user_id} project={project_id} "
            f"conversations={len(processed.conversations)} "
            f"duration_ms={int((time.monotonic() - start) * 1000)}"
        )
        return True
    except asyncio.CancelledError:
        raise
    except Exception as e:
        if isinstance(e, OptimizerError):
            message = e.message
        else:
            message = str(e).strip() or "Unknown error occurred"
            logger.exception(f"Unexpected optimization failure for user={user_id}")
        details = dict(e.details) if isinstance(e, OptimizerError) else {}
        if isinstance(e, ParseError):
            details["raw_output"] = e.raw_output[:_RAW_OUTPUT_LIMIT]
        logger.warning(f"Optimization error user={user_id} project={project_id}: {message}")
        try:
            await store.fail(user_id, project_id, message, run_id=run_id, details=details)
        except Exception as write_error:
            logger.error(f"Could not record optimization error for user={user_id}: {write_error}")
        return False


class OptimizationRunner:
    """Spawns detached pipeline tasks and keeps them referenced until done."""

    def __init__(
        self,
        store: JobStore,
        *,
        fetch: Callable[..., Awaitable[list]] = fetch_transcript,
        analyze: Callable[..., Awaitable[Any]] = recommend,
    ):
        self._store = store
        self._fetch = fetch
        self._analyze = analyze
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(
        self,
        *,
        user_id: str,
        project_id: str,
        api_key: str,
        split_by_launch: bool = True,
        run_id: Optional[str] = None,
    ) -> asyncio.Task:
        task = asyncio.create_task(
            run_optimization(
                self._store,
                user_id=user_id,
                project_id=project_id,
                api_key=api_key,
                split_by_launch=split_by_launch,
                run_id=run_id,
                fetch=self._fetch,
                analyze=self._analyze,
            ),
            name=f"optimize:{user_id}:{project_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Optimization task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Optimization task {task.get_name()} crashed: {exc}")

    async def shutdown(self):
        if not self._tasks:
            return
        pending = list(self._tasks)
        logger.info(f"Cancelling {len(pending)} in-flight optimization task(s)")
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
