import abc
import datetime
from typing import Optional

from pydantic import Field

from session_models import (
    ActiveSession,
    CamelModel,
    EngineError,
    ExerciseProgress,
    LoggedSet,
    Routine,
)


class BackendError(EngineError):
    """The workout backend rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendUnavailableError(BackendError):
    """The workout backend could not be reached."""


class _Deferred(CamelModel):
    queued: bool = False
    offline: bool = False

    @property
    def deferred(self) -> bool:
        return self.queued and self.offline


class SessionSnapshot(CamelModel):
    session: Optional[ActiveSession] = None
    routines: list[Routine] = Field(default_factory=list)


class ProgressResult(_Deferred):
    exercise_progress: Optional[ExerciseProgress] = None


class CreatedSet(_Deferred):
    logged_set: LoggedSet = Field(alias="set")
    exercise_progress: Optional[ExerciseProgress] = None


class RoutineTarget(CamelModel):
    routine_id: Optional[int] = None
    exercise_id: Optional[int] = None
    routine_exercise_id: Optional[int] = None
    equipment: Optional[str] = None
    target_weight: Optional[float] = None
    updated_at: Optional[datetime.datetime] = None
    pending: bool = False


class TargetUpdate(_Deferred):
    target: Optional[RoutineTarget] = None


class SessionUpdate(_Deferred):
    session: Optional[ActiveSession] = None


class UpdatedSet(_Deferred):
    logged_set: Optional[LoggedSet] = Field(None, alias="set")


class SessionBackend(abc.ABC):
    """Operations the engine needs from the workout backend."""

    @abc.abstractmethod
    async def fetch_active_session(self) -> SessionSnapshot:
        ...

    @abc.abstractmethod
    async def start_session(self, routine_id: int) -> SessionUpdate:
        ...

    @abc.abstractmethod
    async def cancel_session(self, session_id: int) -> None:
        ...

    @abc.abstractmethod
    async def start_exercise(
        self,
        session_id: int,
        exercise_id: int,
        routine_exercise_id: Optional[int],
        started_at: datetime.datetime,
    ) -> ProgressResult:
        ...

    @abc.abstractmethod
    async def complete_exercise(
        self,
        session_id: int,
        exercise_id: int,
        routine_exercise_id: Optional[int],
        completed_at: datetime.datetime,
        skipped: bool = False,
    ) -> ProgressResult:
        ...

    @abc.abstractmethod
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
        ...

    @abc.abstractmethod
    async def update_set(
        self,
        set_id,
        reps: int,
        weight: float,
        band_label: Optional[str] = None,
    ) -> UpdatedSet:
        ...

    @abc.abstractmethod
    async def delete_set(self, set_id) -> None:
        ...

    @abc.abstractmethod
    async def update_routine_target(
        self,
        routine_id: int,
        exercise_id: int,
        routine_exercise_id: Optional[int],
        equipment: Optional[str],
        target_weight: float,
    ) -> TargetUpdate:
        ...

    @abc.abstractmethod
    async def fetch_session_detail(self, session_id: int) -> Optional[ActiveSession]:
        ...

    @abc.abstractmethod
    async def end_session(
        self,
        session_id: int,
        ended_at: datetime.datetime,
        warmup_started_at: Optional[datetime.datetime] = None,
        warmup_completed_at: Optional[datetime.datetime] = None,
    ) -> SessionUpdate:
        ...
