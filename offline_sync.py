"""Offline mutation queue: queued responses and batch replay."""

from __future__ import annotations

import asyncio
import datetime
import inspect
from typing import Any, Callable, Optional

import httpx
from loguru import logger
from pydantic import BaseModel

from db import QueuedOperation, SyncOperationRepository

SYNC_BATCH_PATH = "/api/sync/batch"
RESOLVED_STATUSES = {"applied", "duplicate"}

SET_CREATE = "session_set.create"
SET_DELETE = "session_set.delete"
SET_UPDATE = "session_set.update"
EXERCISE_START = "session_exercise.start"
EXERCISE_COMPLETE = "session_exercise.complete"
SESSION_UPDATE = "session.update"
TARGET_WEIGHT_UPDATE = "routine_exercise.target_weight.update"


def now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _progress(payload: dict, status: str, **stamps: Any) -> dict:
    return {
        "exerciseId": payload.get("exerciseId"),
        "routineExerciseId": payload.get("routineExerciseId"),
        "status": status,
        "pending": True,
        **stamps,
    }


def build_queued_response(operation: QueuedOperation) -> dict:
    """Synthesize the response the backend would have sent for ``operation``."""
    payload = operation.payload
    response: dict = {"queued": True, "offline": True}
    if operation.operation_type == SET_CREATE:
        completed_at = payload.get("completedAt") or now_iso()
        response["set"] = {
            "id": f"offline-{operation.operation_id}",
            "sessionId": payload.get("sessionId"),
            "exerciseId": payload.get("exerciseId"),
            "routineExerciseId": payload.get("routineExerciseId"),
            "setIndex": payload.get("setIndex") or 1,
            "reps": payload.get("reps"),
            "weight": payload.get("weight"),
            "bandLabel": payload.get("bandLabel"),
            "startedAt": payload.get("startedAt"),
            "completedAt": completed_at,
            "createdAt": completed_at,
            "pending": True,
        }
        response["exerciseProgress"] = _progress(
            payload,
            "in_progress",
            startedAt=payload.get("startedAt") or completed_at,
            completedAt=None,
        )
    elif operation.operation_type == SET_UPDATE:
        response["set"] = {
            "id": payload.get("setId"),
            "reps": payload.get("reps"),
            "weight": payload.get("weight"),
            "bandLabel": payload.get("bandLabel") or None,
            "pending": True,
        }
    elif operation.operation_type == EXERCISE_START:
        response["exerciseProgress"] = _progress(
            payload,
            "in_progress",
            startedAt=payload.get("startedAt") or now_iso(),
            completedAt=None,
        )
    elif operation.operation_type == EXERCISE_COMPLETE:
        response["exerciseProgress"] = _progress(
            payload,
            "skipped" if payload.get("skipped") else "completed",
            completedAt=payload.get("completedAt") or now_iso(),
        )
    elif operation.operation_type == SESSION_UPDATE:
        response["session"] = {
            "id": payload.get("sessionId"),
            "endedAt": payload.get("endedAt"),
            "warmupStartedAt": payload.get("warmupStartedAt"),
            "warmupCompletedAt": payload.get("warmupCompletedAt"),
        }
    elif operation.operation_type == TARGET_WEIGHT_UPDATE:
        response["target"] = {
            "routineId": payload.get("routineId"),
            "exerciseId": payload.get("exerciseId"),
            "routineExerciseId": payload.get("routineExerciseId"),
            "equipment": payload.get("equipment"),
            "targetWeight": payload.get("targetWeight"),
            "updatedAt": now_iso(),
            "pending": True,
        }
    else:
        response["ok"] = True
    return response


class SyncState(BaseModel):
    online: bool = True
    syncing: bool = False
    queue_size: int = 0
    last_sync_at: Optional[str] = None
    last_error: Optional[str] = None


SyncListener = Callable[[int], Any]


class OfflineSync:
    """Stores mutations made while offline and replays them in batches."""

    def __init__(self, repository: SyncOperationRepository, batch_limit: int = 50) -> None:
        self.repository = repository
        self.batch_limit = batch_limit
        self.state = SyncState()
        self._listeners: list[SyncListener] = []
        self._lock = asyncio.Lock()

    def add_listener(self, listener: SyncListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SyncListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def enqueue(self, operation_type: str, payload: dict) -> QueuedOperation:
        operation = await self.repository.add(operation_type, payload)
        self.state.online = False
        self.state.queue_size = await self.repository.count()
        self.state.last_error = None
        logger.info(
            "Queued {} offline ({} pending)", operation_type, self.state.queue_size
        )
        return operation

    async def discard(self, operation_id: str) -> None:
        await self.repository.remove([operation_id])
        self.state.queue_size = await self.repository.count()

    async def _emit_sync_complete(self, applied: int) -> None:
        for listener in list(self._listeners):
            result = listener(applied)
            if inspect.isawaitable(result):
                await result

    async def flush(self, http: httpx.AsyncClient) -> int:
        """Replay queued operations, returning how many the backend resolved."""
        if self._lock.locked():
            return 0
        async with self._lock:
            resolved_total = 0
            while True:
                batch = await self.repository.fetch_pending(self.batch_limit)
                self.state.queue_size = await self.repository.count()
                if not batch:
                    break
                self.state.syncing = True
                self.state.last_error = None
                try:
                    response = await http.post(
                        SYNC_BATCH_PATH,
                        json={"operations": [op.to_wire() for op in batch]},
                    )
                except httpx.TransportError as exc:
                    self.state.online = False
                    self.state.last_error = "Failed to sync offline changes."
                    logger.warning("Offline sync failed: {}", exc)
                    break
                finally:
                    self.state.syncing = False

                data = _json_or_none(response)
                if response.is_error:
                    message = (data or {}).get("error") or "Failed to sync offline changes."
                    self.state.last_error = message
                    logger.warning("Offline sync rejected: {}", message)
                    break

                self.state.online = True
                resolved = [
                    result.get("operationId")
                    for result in (data or {}).get("results", [])
                    if result.get("status") in RESOLVED_STATUSES and result.get("operationId")
                ]
                await self.repository.remove(resolved)
                self.state.queue_size = await self.repository.count()
                self.state.last_sync_at = now_iso()
                rejected = ((data or {}).get("summary") or {}).get("rejected") or 0
                if rejected > 0:
                    self.state.last_error = "Some queued changes were rejected."
                logger.info(
                    "Offline sync resolved {} operation(s), {} remaining",
                    len(resolved),
                    self.state.queue_size,
                )
                if resolved:
                    resolved_total += len(resolved)
                    await self._emit_sync_complete(len(resolved))
                if not resolved or not self.state.queue_size:
                    break
            return resolved_total


def _json_or_none(response: httpx.Response) -> Optional[dict]:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
