"""
Script: models.py
Created: 2026-10-16
Purpose: Pydantic wire models and boundary validation for RateHub
Keywords: models, pydantic, validation, ingest, broadcast
Status: active
Prerequisites:
  - pydantic
Changelog:
  - 2026-10-16: Rewritten for throughput reports, history and broadcast payloads
See-Also: store.py, endpoints.py
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


PERIODIC = "periodic"  # signal_type of a regular report, never stored as a signal
DEFAULT_STATUS = "running"


# =============================================================================
# Timestamps
# =============================================================================

def iso_from_datetime(value: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with millisecond precision and a Z suffix."""
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_from_epoch_ms(epoch_ms: float) -> str:
    return iso_from_datetime(datetime.fromtimestamp(epoch_ms / 1000.0, tz=timezone.utc))


def utc_now_iso() -> str:
    return iso_from_datetime(datetime.now(timezone.utc))


# =============================================================================
# Inbound
# =============================================================================

class IngestReport(BaseModel):
    """Single throughput report from a feed producer."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    exchange: str = Field(..., min_length=1, description="Feed source, e.g. an exchange name")
    channel: str = Field(..., min_length=1, description="Feed channel, e.g. trade or inc")
    timestamp: float = Field(..., allow_inf_nan=False, description="Unix timestamp in milliseconds")
    msg_sec: Optional[float] = Field(None, ge=0, allow_inf_nan=False, description="Messages per second (push mode)")
    bytes_sec: Optional[float] = Field(None, ge=0, allow_inf_nan=False, description="Bytes per second (push mode)")
    status: Optional[str] = Field(None, description="Producer status, defaults to running")
    signal_type: Optional[str] = Field(None, description="Signal name, 'periodic' for regular reports")
    msg_count: int = Field(1, ge=0, description="Raw message count (pull mode)")
    msg_bytes: int = Field(0, ge=0, description="Raw byte count (pull mode)")

    @field_validator("timestamp")
    @classmethod
    def _representable(cls, value: float) -> float:
        try:
            iso_from_epoch_ms(value)
        except (OverflowError, OSError, ValueError):
            raise ValueError("timestamp out of range")
        return value

    @property
    def iso_timestamp(self) -> str:
        return iso_from_epoch_ms(self.timestamp)

    @property
    def is_signal(self) -> bool:
        return bool(self.signal_type) and self.signal_type != PERIODIC


@dataclass(frozen=True)
class ParseResult:
    """Outcome of validating one inbound report."""
    report: Optional[IngestReport] = None
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.report is not None


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "report"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def parse_report(raw: Union[str, bytes, Mapping[str, Any]]) -> ParseResult:
    """Decode and validate a report. Never raises; failures come back in the result."""
    data: Any = raw
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except ValueError as exc:
            return ParseResult(error=f"invalid JSON: {exc}")

    if not isinstance(data, Mapping):
        return ParseResult(error="report must be a JSON object")

    payload = dict(data)
    try:
        report = IngestReport.model_validate(payload)
    except ValidationError as exc:
        return ParseResult(payload=payload, error=_describe(exc))
    return ParseResult(report=report, payload=payload)


class IngestRequest(BaseModel):
    """Batch ingest request. Reports are validated one by one."""
    reports: List[Any]


# =============================================================================
# Outbound / persisted
# =============================================================================

class SignalEvent(BaseModel):
    """Notable non-periodic status change of a feed."""

    model_config = ConfigDict(frozen=True)

    time: str
    type: str
    exchange: str
    channel: str


class FeedSeries(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    msg_rates: Tuple[int, ...] = Field((), alias="msgRates")
    bytes_per_sec: Tuple[int, ...] = Field((), alias="bytesPerSec")


class History(BaseModel):
    """Bounded history. Also the shape of the persisted history file."""

    model_config = ConfigDict(frozen=True)

    timestamps: Tuple[str, ...] = ()
    exchanges: Dict[str, Dict[str, FeedSeries]] = Field(default_factory=dict)
    signals: Tuple[SignalEvent, ...] = ()

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class FeedStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    msg_rate: int = 0
    bytes_per_sec: int = 0
    status: str = DEFAULT_STATUS
    signal_type: str = PERIODIC
    timestamp: str = ""


class CurrentStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    exchanges: Dict[str, Dict[str, FeedStatus]] = Field(default_factory=dict)


class BroadcastMessage(BaseModel):
    """Frame delivered to subscribers: full history plus latest status."""

    model_config = ConfigDict(frozen=True)

    history: History
    current: Optional[CurrentStatus] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
