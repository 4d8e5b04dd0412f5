import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from backoffice.domain.imports.target_schemas import SCHEMAS

logger = logging.getLogger(__name__)

ImportMode = Literal["amend", "replace"]


class ImportSubmissionRequest(BaseModel):
    """Submit an already staged file for import."""
    file_reference: str = Field(..., min_length=1, description="Key of the staged file")
    file_name: str = Field(..., min_length=1, description="Original file name; its extension selects the parser")
    target_schema: str
    import_mode: ImportMode = "amend"
    idempotency_key: str = Field(..., min_length=1)
    job_id: Optional[str] = None
    content_type: Optional[str] = None
    to_number: Optional[str] = None  # Transfer number for transfer-items imports

    @field_validator("target_schema")
    @classmethod
    def validate_target_schema(cls, value: str) -> str:
        normalized = value.strip()
        if normalized not in SCHEMAS:
            raise ValueError(f"Unknown target schema '{value}'. Expected one of: {', '.join(sorted(SCHEMAS))}")
        return normalized

    @field_validator("file_reference", "file_name", "idempotency_key")
    @classmethod
    def strip_required_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Value must not be blank")
        return stripped

    @field_validator("to_number", "job_id")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class ImportSubmissionResponse(BaseModel):
    job_id: str
    status: str
    created: bool


class ImportProgressInfo(BaseModel):
    phase: str
    rows_total: int = 0
    rows_parsed: int = 0
    rows_valid: int = 0
    rows_written: int = 0
    rows_failed: int = 0
    duplicates_skipped: int = 0
    write_failed: int = 0
    throughput_rps: float = 0.0
    eta_seconds: float = 0.0
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ImportErrorDetail(BaseModel):
    """One row-level problem recorded while importing."""
    row: int
    field: str
    raw_value: Optional[str] = None
    message: str


class ImportJobInfo(BaseModel):
    """Status of a single import job."""
    job_id: str
    status: str
    target_schema: str
    import_mode: str
    file_name: Optional[str] = None
    progress: ImportProgressInfo
    error_count: int = 0
    errors: List[ImportErrorDetail] = Field(default_factory=list)
    duplicates: Dict[str, List[int]] = Field(default_factory=dict)
    rows_new: int = 0
    rows_updated: int = 0
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ImportJobListResponse(BaseModel):
    """Response wrapper for a list of import jobs."""
    jobs: List[ImportJobInfo]
    total_count: int
    limit: int
    offset: int


class PriceQuoteResponse(BaseModel):
    normal_price: Decimal
    unit_price: Decimal
    discount_amount: Decimal
    final_price: Decimal
    source: str
