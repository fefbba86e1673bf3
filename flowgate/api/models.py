"""
FlowGate API - request and response models.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from flowgate.core.schemas.analysis import Analysis
from flowgate.core.status_tracker import PollReport


class BaseResponse(BaseModel):
    """Base response model."""

    success: bool = True
    message: str = ""


class AnalysisCreate(BaseModel):
    """Submission of a new analysis."""

    experiment_id: Optional[int] = None
    module_id: int
    dataset_id: Optional[int] = None
    analysis_name: str = Field(..., min_length=1, max_length=255)
    analysis_description: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("analysis_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("analysis_name cannot be blank")
        return v.strip()


class AnalysisResponse(BaseResponse):
    analysis: Analysis


class AnalysisListResponse(BaseResponse):
    analyses: List[Analysis] = Field(default_factory=list)
    periodic_check_needed: bool = False


class CheckStatusResponse(BaseResponse):
    report: PollReport
    upd_chk_status: str


class CallbackResponse(BaseModel):
    msg: str


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime
    uptime_seconds: float
    sweeper_running: bool
    analyses: Dict[str, Any] = Field(default_factory=dict)
    memory_usage_mb: Optional[float] = None
