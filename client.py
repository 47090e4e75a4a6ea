import asyncio
import datetime
from typing import Any, Optional

import httpx
from loguru import logger

from backend import (
    BackendError,
    BackendUnavailableError,
    CreatedSet,
    ProgressResult,
    SessionBackend,
    SessionSnapshot,
    SessionUpdate,
    TargetUpdate,
    UpdatedSet,
)
from offline_sync import (
    EXERCISE_COMPLETE,
    EXERCISE_START,
    SESSION_UPDATE,
    SET_CREATE,
    SET_DELETE,
    SET_UPDATE,
    TARGET_WEIGHT_UPDATE,
    OfflineSync,
    build_queued_response,
)
from session_models import ActiveSession, Routine

OFFLINE_SET_PREFIX = "offline-"


def _iso(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class SessionClient(SessionBackend):
    """REST client for the workout API with an offline write queue."""

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        token: Optional[str] = None,
        timeout: float = 10.0,
        offline: Optional[OfflineSync] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.base_url = base_url.rstrip("/")
        self.offline = offline
        self.http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, body: Optional[dict] = None) -> Any:
        try:
            response = await self.http.request(method, path, json=body)
        except httpx.TransportError as exc:
            raise BackendUnavailableError(f"{method} {path} failed: {exc}") from exc
        if self.offline is not None:
            self.offline.state.online = True
        if response.status_code == 204:
            return None
        try:
            data = response.json()
        except ValueError:
            data = None
        if response.is_error:
            message = data.get("error") if isinstance(data, dict) else None
            raise BackendError(message or "Request failed", response.status_code)
        return data

    async def _mutate(
        self,
        method: str,
        path: str,
        body: dict,
        operation_type: str,
        payload: dict,
    ) -> Any:
        """Send a write, queueing it offline if the backend is unreachable."""
        try:
            return await self._request(method, path, body)
        except BackendUnavailableError:
            if self.offline is None:
                raise
            logger.warning("{} {} unreachable, queueing {}", method, path, operation_type)
            operation = await self.offline.enqueue(operation_type, payload)
            return build_queued_response(operation)

    async def flush_offline(self) -> int:
        if self.offline is None:
            return 0
        return await self.offline.flush(self.http)

    async def fetch_active_session(self) -> SessionSnapshot:
        session_data, routines = await asyncio.gather(
            self._request("GET", "/api/sessions/active"),
            self.fetch_routines(),
        )
        return SessionSnapshot(session=(session_data or {}).get("session"), routines=routines)

    async def fetch_routines(self) -> list[Routine]:
        data = await self._request("GET", "/api/routines")
        return [Routine.model_validate(item) for item in (data or {}).get("routines") or []]

    async def start_session(self, routine_id: int) -> SessionUpdate:
        data = await self._request("POST", "/api/sessions", {"routineId": routine_id})
        return SessionUpdate.model_validate(data or {})

    async def cancel_session(self, session_id: int) -> None:
        await self._request("DELETE", f"/api/sessions/{session_id}")

    async def start_exercise(
        self,
        session_id: int,
        exercise_id: int,
        routine_exercise_id: Optional[int],
        started_at: datetime.datetime,
    ) -> ProgressResult:
        body = {"routineExerciseId": routine_exercise_id, "startedAt": _iso(started_at)}
        data = await self._mutate(
            "POST",
            f"/api/sessions/{session_id}/exercises/{exercise_id}/start",
            body,
            EXERCISE_START,
            {"sessionId": session_id, "exerciseId": exercise_id, **body},
        )
        return ProgressResult.model_validate(data or {})

    async def complete_exercise(
        self,
        session_id: int,
        exercise_id: int,
        routine_exercise_id: Optional[int],
        completed_at: datetime.datetime,
        skipped: bool = False,
    ) -> ProgressResult:
        body = {
            "routineExerciseId": routine_exercise_id,
            "completedAt": _iso(completed_at),
            "skipped": skipped,
        }
        data = await self._mutate(
            "POST",
            f"/api/sessions/{session_id}/exercises/{exercise_id}/complete",
            body,
            EXERCISE_COMPLETE,
            {"sessionId": session_id, "exerciseId": exercise_id, **body},
        )
        return ProgressResult.model_validate(data or {})

    async def create_set(
        self,
        session_id: int,
        exercise_id: int,
        routine_exercise_id: Optional[int],
        reps: int,
        weight: float,
        band_label: Optional[str],
        started_at: datetime.datetime,
        completed_at: datetime.datetime,
        set_index: Optional[int] = None,
    ) -> CreatedSet:
        body = {
            "exerciseId": exercise_id,
            "routineExerciseId": routine_exercise_id,
            "setIndex": set_index,
            "reps": reps,
            "weight": weight,
            "bandLabel": band_label,
            "startedAt": _iso(started_at),
            "completedAt": _iso(completed_at),
        }
        data = await self._mutate(
            "POST",
            f"/api/sessions/{session_id}/sets",
            body,
            SET_CREATE,
            {"sessionId": session_id, **body},
        )
        return CreatedSet.model_validate(data or {})

    async def update_set(
        self,
        set_id,
        reps: int,
        weight: float,
        band_label: Optional[str] = None,
    ) -> UpdatedSet:
        body = {"reps": reps, "weight": weight, "bandLabel": band_label}
        data = await self._mutate(
            "PUT", f"/api/sets/{set_id}", body, SET_UPDATE, {"setId": set_id, **body}
        )
        return UpdatedSet.model_validate(data or {})

    async def delete_set(self, set_id) -> None:
        text = str(set_id)
        if text.startswith(OFFLINE_SET_PREFIX) and self.offline is not None:
            # Never reached the server: drop the queued create instead.
            await self.offline.discard(text[len(OFFLINE_SET_PREFIX):])
            return
        await self._mutate(
            "DELETE", f"/api/sets/{text}", None, SET_DELETE, {"setId": set_id}
        )

    async def update_routine_target(
        self,
        routine_id: int,
        exercise_id: int,
        routine_exercise_id: Optional[int],
        equipment: Optional[str],
        target_weight: float,
    ) -> TargetUpdate:
        body = {
            "routineExerciseId": routine_exercise_id,
            "equipment": equipment,
            "targetWeight": target_weight,
        }
        data = await self._mutate(
            "PUT",
            f"/api/routines/{routine_id}/exercises/{exercise_id}/target",
            body,
            TARGET_WEIGHT_UPDATE,
            {"routineId": routine_id, "exerciseId": exercise_id, **body},
        )
        return TargetUpdate.model_validate(data or {})

    async def fetch_session_detail(self, session_id: int) -> Optional[ActiveSession]:
        data = await self._request("GET", f"/api/sessions/{session_id}")
        session = (data or {}).get("session")
        return ActiveSession.model_validate(session) if session else None

    async def end_session(
        self,
        session_id: int,
        ended_at: datetime.datetime,
        warmup_started_at: Optional[datetime.datetime] = None,
        warmup_completed_at: Optional[datetime.datetime] = None,
    ) -> SessionUpdate:
        body = {"endedAt": _iso(ended_at)}
        if warmup_started_at is not None:
            body["warmupStartedAt"] = _iso(warmup_started_at)
        if warmup_completed_at is not None:
            body["warmupCompletedAt"] = _iso(warmup_completed_at)
        data = await self._mutate(
            "PUT",
            f"/api/sessions/{session_id}",
            body,
            SESSION_UPDATE,
            {"sessionId": session_id, **body},
        )
        return SessionUpdate.model_validate(data or {})
