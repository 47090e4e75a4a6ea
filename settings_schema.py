from typing import Optional

from pydantic import BaseModel, Field, ValidationError


class EngineSettings(BaseModel):
    api_base_url: str = "http://localhost:3000"
    api_token: Optional[str] = None
    default_band_label: str = "Red"
    target_weight_min: float = Field(0.5, gt=0)
    target_weight_step_default: float = Field(1.0, gt=0)
    target_weight_step_barbell: float = Field(2.5, gt=0)
    target_weight_status_clear_seconds: float = Field(1.8, ge=0)
    celebration_seconds: float = Field(0.52, ge=0)
    reduced_motion: bool = False
    reduced_motion_feedback_seconds: float = Field(0.12, ge=0)
    notice_clear_seconds: float = Field(5.0, ge=0)
    undo_delete_seconds: float = Field(5.0, ge=0)
    offline_db_path: str = "offline_queue.db"
    sync_batch_limit: int = Field(50, ge=1)
    language: str = "en"
    request_timeout_seconds: float = Field(10.0, gt=0)
    log_level: str = "INFO"

    @property
    def feedback_seconds(self) -> float:
        if self.reduced_motion:
            return self.reduced_motion_feedback_seconds
        return self.celebration_seconds


def validate_settings(data: dict) -> EngineSettings:
    try:
        return EngineSettings(**data)
    except ValidationError as e:
        raise ValueError(str(e))
