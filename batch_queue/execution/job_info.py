"""
Job models shared by every batch queue backend.

JobInfo is what callers get back from wait(); ResourceRequest is what they
may pass to submit().
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResourceRequest(BaseModel):
    """Resources requested for a single job. -1 means unspecified."""

    cores: int = Field(default=-1, description="Number of CPU cores")
    memory: int = Field(default=-1, description="Memory in MB")

    @property
    def is_complete(self) -> bool:
        """Both cores and memory were given."""
        return self.cores > -1 and self.memory > -1


class JobInfo(BaseModel):
    """
    Result metadata for a submitted job.

    Created at submit time and finalized exactly once, when the job reaches
    a terminal state.
    """

    job_id: int = Field(..., description="Identifier returned by submit")

    # Timestamps
    submitted: datetime = Field(default_factory=utcnow)
    started: Optional[datetime] = None
    finished: Optional[datetime] = None

    # Exit disposition
    exited_normally: bool = False
    exit_code: int = 0
    exit_signal: int = 0

    # Control plane failure description, when the job never ran
    failure_info: Optional[str] = None

    def finalize(
        self,
        exited_normally: bool,
        exit_code: int = 0,
        exit_signal: int = 0,
        failure_info: Optional[str] = None,
    ) -> "JobInfo":
        """Record the terminal disposition of the job."""
        self.finished = utcnow()
        self.exited_normally = exited_normally
        self.exit_code = exit_code
        self.exit_signal = exit_signal
        self.failure_info = failure_info
        return self
