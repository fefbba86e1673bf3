"""
Backend-neutral projection of a remote job.

Every backend client produces a ``JobResult`` so the status tracker and the
result retriever never branch on the backend kind.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class OutputFile(BaseModel):
    """One output artifact of a remote job."""

    path: str
    link: Optional[str] = None
    content_type: Optional[str] = None
    size: Optional[int] = None


class JobStatusBlock(BaseModel):
    """Completion and error flags reported by the backend."""

    is_finished: bool = False
    has_error: bool = False
    is_pending: bool = False
    message: Optional[str] = None
    stderr_location: Optional[str] = None


class JobResult(BaseModel):
    """
    Normalized view of a remote job.

    Attributes:
        status_code: HTTP-like status of the status query itself
        reason: Reason phrase accompanying a non-success status code
        output_files: Ordered output artifacts
        status: Completion and error flags
        completed_at: Completion timestamp, when the backend reports one
    """

    status_code: int = 200
    reason: Optional[str] = None
    output_files: List[OutputFile] = Field(default_factory=list)
    status: JobStatusBlock = Field(default_factory=JobStatusBlock)
    completed_at: Optional[datetime] = None

    @property
    def is_success(self) -> bool:
        return self.status_code in (200, 201)

    def find_output(self, path: str) -> Optional[OutputFile]:
        """Return the output whose path matches exactly, if any."""
        for output in self.output_files:
            if output.path == path:
                return output
        return None
