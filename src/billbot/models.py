"""Pydantic models aligned with the storage schema and internal processing."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def as_utc(value: datetime) -> datetime:
    """Read naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BillType(str, Enum):
    """Utility category of a bill. Member order is the display order."""

    ELECTRICITY = "electricity"
    HOT_WATER = "hot_water"
    WATER = "water"
    INTERNET = "internet"


# ============================================================================
# Extraction Models
# ============================================================================


class ParsedBill(BaseModel):
    """Structured bill data returned by the extraction model."""

    type: BillType = Field(description="Utility category of the bill")
    amount: Decimal = Field(gt=0, description="Total amount of the bill")
    issue_date: datetime = Field(description="Date the bill was issued (not the due date)")
    confidence: float = Field(ge=0, le=1, description="Confidence score between 0 and 1")

    @field_validator("issue_date")
    @classmethod
    def issue_date_as_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class ExtractedBill(BaseModel):
    """A parsed bill paired with the message it came from."""

    bill: ParsedBill
    message_id: str


# ============================================================================
# Database Models (aligned with PostgreSQL schema)
# ============================================================================


class TokenRecord(BaseModel):
    """OAuth token pair for a single user."""

    user_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def remaining_seconds(self, now: datetime) -> float:
        return (self.expires_at - now).total_seconds()


class BillRecord(BaseModel):
    """Stored bill (one per user and provider message id)."""

    id: Optional[int] = None  # Auto-generated
    user_id: str
    type: BillType
    amount: Decimal
    issue_date: datetime
    confidence: float = Field(ge=0, le=1)
    provider_message_id: str
    ingested_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("issue_date", "ingested_at")
    @classmethod
    def dates_as_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def to_parsed(self) -> ParsedBill:
        return ParsedBill(
            type=self.type,
            amount=self.amount,
            issue_date=self.issue_date,
            confidence=self.confidence,
        )


# ============================================================================
# Internal Processing Models (not stored in database)
# ============================================================================


class MessageStub(BaseModel):
    """Search hit from the mail provider."""

    id: str
    thread_id: Optional[str] = None


class CandidateMessage(BaseModel):
    """Message that passed the subject filter, with its advisory hint."""

    message_id: str
    subject: str
    subject_hint: Optional[BillType] = None


class BillAttachment(BaseModel):
    """Downloaded PDF attachment (internal processing)."""

    message_id: str
    filename: str = ""
    mime_type: str = "application/pdf"
    data: bytes
    subject_hint: Optional[BillType] = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class PipelineRun(BaseModel):
    """In-memory state of one scan. Discarded when the scan finishes."""

    user_id: str
    channel_id: Optional[str] = None
    days_back: int = 30
    candidates: list[MessageStub] = Field(default_factory=list)
    filtered: list[CandidateMessage] = Field(default_factory=list)
    attachments: list[BillAttachment] = Field(default_factory=list)
    extracted: list[ExtractedBill] = Field(default_factory=list)


# ============================================================================
# Metrics Models
# ============================================================================


class ScanMetrics(BaseModel):
    """Counters and timings for one scan."""

    user_id: str
    candidates: int = 0
    filtered: int = 0
    pdfs_fetched: int = 0
    fetch_failures: int = 0
    bills_extracted: int = 0
    extraction_failures: int = 0
    bills_stored: int = 0
    stage_times_sec: dict[str, float] = Field(default_factory=dict)
    duration_sec: float = 0.0


class ScanResult(BaseModel):
    """Outcome of one scan: the bills found, or the error that stopped it."""

    success: bool
    bills: list[ParsedBill] = Field(default_factory=list)
    error: Optional[Exception] = None
    metrics: Optional[ScanMetrics] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None
