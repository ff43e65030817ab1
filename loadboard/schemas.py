# loadboard/schemas.py
from enum import Enum
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Column order of the CSV output; changing it breaks downstream readers.
RECORD_FIELDS = (
    "identifier",
    "origin",
    "destination",
    "rate_total",
    "rate_per_mile",
    "company",
    "contact",
    "age_posted",
    "extracted_at",
)

def utcnow():
    return datetime.now(timezone.utc)

def _fp_part(value) -> str:
    return "" if value is None else str(value).strip().lower()

class ListingRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: Optional[str] = None
    origin: str
    destination: str = ""
    rate_total: Optional[int] = None
    rate_per_mile: Optional[float] = None
    company: Optional[str] = None
    contact: Optional[str] = None
    age_posted: Optional[str] = None
    extracted_at: datetime = Field(default_factory=utcnow)

    @field_validator("identifier", "company", "contact", "age_posted", "rate_total", "rate_per_mile", mode="before")
    @classmethod
    def _blank_is_none(cls, v):
        # CSV round-trips write None as an empty cell
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def fingerprint(self) -> str:
        # identifier is left out: synthesized ids are not stable across runs
        return "|".join(
            _fp_part(v)
            for v in (self.origin, self.destination, self.company, self.rate_total, self.contact)
        )

    def to_row(self) -> dict:
        row = self.model_dump(mode="json")
        return {k: "" if row[k] is None else row[k] for k in RECORD_FIELDS}

class AppendResult(BaseModel):
    written: int = 0
    duplicates: int = 0
    rotated_to: Optional[Path] = None

class RunResult(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    duration: float = 0.0
    items_seen: int = 0
    new_records: int = 0
    duplicates: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

class HealthState(str, Enum):
    STARTING = "starting"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"
    STOPPED = "stopped"

class HealthStatus(BaseModel):
    state: HealthState = HealthState.STARTING
    consecutive_failures: int = 0
    total_runs: int = 0
    total_successes: int = 0
    total_failures: int = 0
    error_rate: float = 0.0
    last_run: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    started_at: datetime = Field(default_factory=utcnow)

class RunStats(BaseModel):
    total_runs: int = 0
    total_entries: int = 0
    total_new_entries: int = 0
    total_duplicates: int = 0
    total_errors: int = 0
    average_entries_per_run: float = 0.0
    average_new_entries_per_run: float = 0.0
    average_duration: float = 0.0
    success_rate: float = 0.0
    fastest_run: Optional[float] = None
    slowest_run: Optional[float] = None
    first_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    # newest first
    runs: List[RunResult] = Field(default_factory=list)
