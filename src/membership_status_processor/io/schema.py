"""
Schema definitions for membership status recalculation.

This module defines the data models shared by the membership stores, the
status catalog and the recalculation job, together with the converters used
to read and write them as database rows.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class StatusEvent(str, Enum):
    """Membership date a status boundary is anchored to."""

    START_DATE = "start_date"
    END_DATE = "end_date"
    JOIN_DATE = "join_date"


class AdjustUnit(str, Enum):
    """Unit of a status boundary adjustment."""

    DAY = "day"
    MONTH = "month"
    YEAR = "year"


class StatusBoundary(BaseModel):
    """One edge of a status date window, e.g. ``end_date + 1 month``."""

    event: StatusEvent = Field(..., description="Membership date the boundary is anchored to")
    unit: Optional[AdjustUnit] = Field(None, description="Adjustment unit")
    interval: int = Field(default=0, description="Signed adjustment amount")

    @model_validator(mode="after")
    def check_adjustment(self) -> "StatusBoundary":
        if self.interval and self.unit is None:
            raise ValueError("A boundary adjustment interval requires a unit")
        return self


class StatusRule(BaseModel):
    """Date window a membership has to fall in to qualify for a status."""

    start: Optional[StatusBoundary] = None
    end: Optional[StatusBoundary] = None

    @property
    def is_dated(self) -> bool:
        return self.start is not None or self.end is not None


def _boundary_from_row(data: Dict[str, Any], prefix: str) -> Optional[StatusBoundary]:
    event = data.get(f"{prefix}_event")
    if not event:
        return None
    return StatusBoundary(
        event=event,
        unit=data.get(f"{prefix}_event_adjust_unit") or None,
        interval=int(data.get(f"{prefix}_event_adjust_interval") or 0),
    )


def _boundary_to_row(boundary: Optional[StatusBoundary], prefix: str) -> Dict[str, Any]:
    if boundary is None:
        return {
            f"{prefix}_event": None,
            f"{prefix}_event_adjust_unit": None,
            f"{prefix}_event_adjust_interval": None,
        }
    return {
        f"{prefix}_event": boundary.event.value,
        f"{prefix}_event_adjust_unit": boundary.unit.value if boundary.unit else None,
        f"{prefix}_event_adjust_interval": boundary.interval or None,
    }


class MembershipStatus(BaseModel):
    """A named membership lifecycle state from the status catalog."""

    id: int = Field(..., description="Status identifier")
    name: str = Field(..., max_length=128, description="Machine name, e.g. 'Current'")
    label: Optional[str] = Field(None, max_length=128, description="Display label")
    rule: StatusRule = Field(default_factory=StatusRule, description="Qualification window")
    weight: int = Field(default=0, description="Precedence, lowest first")
    is_active: bool = True
    is_admin: bool = Field(
        default=False, description="Manually assigned; never produced by recalculation"
    )
    is_current_member: bool = False
    is_reserved: bool = False

    def to_db_dict(self) -> Dict[str, Any]:
        """Convert to a ``civicrm_membership_status`` row."""
        data = {
            "id": self.id,
            "name": self.name,
            "label": self.label or self.name,
            "weight": self.weight,
            "is_active": self.is_active,
            "is_admin": self.is_admin,
            "is_current_member": self.is_current_member,
            "is_reserved": self.is_reserved,
        }
        data.update(_boundary_to_row(self.rule.start, "start"))
        data.update(_boundary_to_row(self.rule.end, "end"))
        return data

    @classmethod
    def from_db_dict(cls, data: Dict[str, Any]) -> "MembershipStatus":
        """Create instance from a ``civicrm_membership_status`` row."""
        return cls(
            id=data["id"],
            name=data["name"],
            label=data.get("label"),
            rule=StatusRule(
                start=_boundary_from_row(data, "start"),
                end=_boundary_from_row(data, "end"),
            ),
            weight=data.get("weight") or 0,
            is_active=bool(data.get("is_active", True)),
            is_admin=bool(data.get("is_admin", False)),
            is_current_member=bool(data.get("is_current_member", False)),
            is_reserved=bool(data.get("is_reserved", False)),
        )


class MembershipType(BaseModel):
    """A category of membership, e.g. 'General'."""

    id: int
    name: str = Field(..., max_length=128)
    is_active: bool = True

    def to_db_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "is_active": self.is_active}

    @classmethod
    def from_db_dict(cls, data: Dict[str, Any]) -> "MembershipType":
        return cls(
            id=data["id"],
            name=data["name"],
            is_active=bool(data.get("is_active", True)),
        )


class Membership(BaseModel):
    """One contact's association with one membership type."""

    id: int = Field(..., description="Membership identifier")
    contact_id: int = Field(..., description="Owning contact")
    membership_type_id: int
    status_id: int = Field(..., description="Current status")
    join_date: Optional[date] = Field(None, description="Date the contact first joined")
    start_date: Optional[date] = None
    end_date: Optional[date] = Field(None, description="None for lifetime memberships")
    is_test: bool = Field(default=False, description="Sandbox or demo record")
    is_override: bool = Field(default=False, description="Status pinned manually")
    status_override_end_date: Optional[date] = Field(
        None, description="Last day of a temporary status override"
    )

    def event_date(self, event: StatusEvent) -> Optional[date]:
        """Return the membership date a status boundary is anchored to."""
        return getattr(self, StatusEvent(event).value)

    def override_lapsed(self, as_of: date) -> bool:
        """True when a temporary status override has run out as of ``as_of``."""
        return (
            self.is_override
            and self.status_override_end_date is not None
            and self.status_override_end_date <= as_of
        )

    def to_db_dict(self) -> Dict[str, Any]:
        """Convert to a ``civicrm_membership`` row."""
        return self.model_dump(mode="json")

    @classmethod
    def from_db_dict(cls, data: Dict[str, Any]) -> "Membership":
        """Create instance from a ``civicrm_membership`` row."""
        return cls(
            id=data["id"],
            contact_id=data["contact_id"],
            membership_type_id=data["membership_type_id"],
            status_id=data["status_id"],
            join_date=data.get("join_date"),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            is_test=bool(data.get("is_test") or False),
            is_override=bool(data.get("is_override") or False),
            status_override_end_date=data.get("status_override_end_date"),
        )


class RecalculationRequest(BaseModel):
    """
    Parameters of one recalculation run.

    Every field is optional; unset fields are resolved to the configured
    defaults once per run (see ``pipeline.request.resolve_request``).
    """

    model_config = ConfigDict(extra="forbid")

    exclude_test_memberships: Optional[bool] = None
    only_active_membership_types: Optional[bool] = None
    exclude_membership_status_ids: Optional[List[int]] = None
    dry_run: bool = False
    as_of: Optional[date] = None

    @field_validator("exclude_membership_status_ids", mode="before")
    @classmethod
    def coerce_status_ids(cls, v):
        """Accept a single id or a comma-separated string as well as a list."""
        if v is None:
            return None
        if isinstance(v, int):
            return [v]
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v


class StatusUpdate(BaseModel):
    """Instruction to move one membership to its natural status."""

    membership_id: int
    from_status_id: int
    to_status_id: int
    clear_override: bool = False

    @property
    def changes_status(self) -> bool:
        return self.from_status_id != self.to_status_id


class RecordUpdateFailure(BaseModel):
    """A status update the store refused; the record keeps its prior status."""

    membership_id: int
    to_status_id: int
    error: str


class RecalculationSummary(BaseModel):
    """Outcome of one recalculation run."""

    run_id: str
    as_of: date
    dry_run: bool = False
    total_scanned: int = 0
    total_examined: int = 0
    total_updated: int = 0
    updated_ids: List[int] = Field(default_factory=list)
    unresolved_ids: List[int] = Field(default_factory=list)
    failures: List[RecordUpdateFailure] = Field(default_factory=list)
    skipped: Dict[str, int] = Field(default_factory=dict)
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: Optional[datetime] = None

    @property
    def total_failed(self) -> int:
        return len(self.failures)

    def to_report_dict(self) -> Dict[str, Any]:
        """JSON-safe dictionary for run summaries and CLI output."""
        data = self.model_dump(mode="json")
        data["total_failed"] = self.total_failed
        return data
