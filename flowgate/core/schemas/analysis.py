"""
Analysis record schema and lifecycle status values.

An Analysis is the local record of exactly one remote job attempt. It is
created by the launcher after submission, mutated by the status tracker and
by explicit soft delete, and removed only by a hard erase.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_RENDER_RESULT = "Reports/AutoReport.html"
FAILED_JOB_NUMBER = "-1"


class AnalysisStatus(int, Enum):
    """Lifecycle status of an analysis."""

    INIT = 1
    PROCESSING = 2
    DONE = 3
    ERROR = -1
    HIDDEN = -2

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_settled(self) -> bool:
        """True for statuses the pull path never touches."""
        return self in SETTLED_STATUSES


TERMINAL_STATUSES = frozenset(
    {AnalysisStatus.DONE, AnalysisStatus.ERROR, AnalysisStatus.HIDDEN}
)
SETTLED_STATUSES = frozenset({AnalysisStatus.DONE, AnalysisStatus.HIDDEN})


def parse_job_number(value: Any) -> Optional[int]:
    """Return the job number as int, or None when it is not numeric."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class Analysis(BaseModel):
    """
    One computational run tracked against a remote job.

    Attributes:
        id: Local identifier assigned by the store
        analysis_name: Display name (required)
        analysis_description: Optional free text
        user: Username of the submitter
        experiment_id: Owning experiment
        module_id: Module that was run
        dataset_id: Dataset bound as input, if any
        job_number: Backend-assigned job id ("-1" when submission failed);
            GenePattern numbers are decimal, Galaxy invocation ids are hex
        analysis_status: Current lifecycle status
        date_created: Creation timestamp
        date_completed: Completion timestamp reported by the backend
        render_result: Output path rendered by default
        message: Last user-visible submission message
        version: Optimistic-lock counter, incremented on every write
    """

    id: Optional[int] = None
    analysis_name: str = Field(..., min_length=1)
    analysis_description: Optional[str] = None
    user: Optional[str] = None
    experiment_id: Optional[int] = None
    module_id: int
    dataset_id: Optional[int] = None
    job_number: Optional[str] = None
    analysis_status: AnalysisStatus = AnalysisStatus.INIT
    date_created: datetime = Field(default_factory=datetime.now)
    date_completed: Optional[datetime] = None
    render_result: Optional[str] = DEFAULT_RENDER_RESULT
    message: Optional[str] = None
    version: int = 0

    @field_validator("analysis_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("analysis_name cannot be blank")
        return v.strip()

    @field_validator("job_number", mode="before")
    @classmethod
    def coerce_job_number(cls, v):
        if v is None:
            return v
        return str(v).strip()

    @property
    def is_failed_on_submit(self) -> bool:
        """True when no remote job exists for this analysis."""
        if not self.job_number:
            return True
        number = parse_job_number(self.job_number)
        return number is not None and number <= 0

    @property
    def has_remote_job(self) -> bool:
        return not self.is_failed_on_submit

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Analysis":
        return cls(**data)
