"""Job request/response schemas."""
import uuid
from typing import Optional
from datetime import datetime
from pydantic import Field, field_validator
from coursevault.schemas.base import CamelModel, CamelORMModel


class JobParams(CamelModel):
    """Options accepted by every reconciliation job; each job reads the ones it needs."""
    source: Optional[str] = None
    user_id: Optional[int] = None
    dry_run: bool = False
    limit: Optional[int] = Field(None, ge=1)
    batch_size: int = Field(100, ge=1, le=10000)
    skip_duplicates: bool = False
    clear_all: bool = False
    force: bool = False
    skip_content: bool = False


class JobCreate(CamelModel):
    job_type: str
    params: JobParams = Field(default_factory=JobParams)

    @field_validator("job_type")
    @classmethod
    def known_job_type(cls, value: str) -> str:
        from coursevault.services.reconciler import JOBS
        if value not in JOBS:
            raise ValueError(f"Unknown job type '{value}'. Expected one of: {', '.join(JOBS)}")
        return value


class JobResponse(CamelORMModel):
    id: uuid.UUID
    job_type: str
    status: str
    params: dict
    result: Optional[dict] = None
    progress: dict
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
