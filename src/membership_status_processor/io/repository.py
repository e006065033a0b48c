"""
Repository interfaces for the status catalog, membership types and memberships.

The recalculation job only talks to these interfaces. This module also holds
the in-memory implementations, which can be loaded from and saved to a local
JSON snapshot file.
"""

from abc import ABC, abstractmethod
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
import logging

from membership_status_processor.errors import StoreOperationError
from membership_status_processor.io.schema import (
    Membership,
    MembershipStatus,
    MembershipType,
)

logger = logging.getLogger(__name__)


# Stock CRM status catalog, in precedence order.
DEFAULT_STATUS_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "id": 1,
        "name": "New",
        "label": "New",
        "start_event": "join_date",
        "end_event": "join_date",
        "end_event_adjust_unit": "month",
        "end_event_adjust_interval": 3,
        "is_current_member": True,
        "weight": 1,
    },
    {
        "id": 2,
        "name": "Current",
        "label": "Current",
        "start_event": "start_date",
        "end_event": "end_date",
        "is_current_member": True,
        "weight": 2,
    },
    {
        "id": 3,
        "name": "Grace",
        "label": "Grace",
        "start_event": "end_date",
        "end_event": "end_date",
        "end_event_adjust_unit": "month",
        "end_event_adjust_interval": 1,
        "is_current_member": True,
        "weight": 3,
    },
    {
        "id": 4,
        "name": "Expired",
        "label": "Expired",
        "start_event": "end_date",
        "start_event_adjust_unit": "month",
        "start_event_adjust_interval": 1,
        "weight": 4,
    },
    {"id": 5, "name": "Pending", "label": "Pending", "is_admin": True, "is_reserved": True, "weight": 5},
    {"id": 6, "name": "Cancelled", "label": "Cancelled", "is_admin": True, "weight": 6},
    {"id": 7, "name": "Deceased", "label": "Deceased", "is_admin": True, "is_reserved": True, "weight": 7},
]


class StatusCatalog(ABC):
    """Read-only lookup of membership statuses."""

    @abstractmethod
    def all_statuses(self) -> List[MembershipStatus]:
        """Return every status, ordered by weight then id."""
        raise NotImplementedError

    def get_status(self, status_id: int) -> Optional[MembershipStatus]:
        for status in self.all_statuses():
            if status.id == status_id:
                return status
        return None

    def get_status_by_name(self, name: str) -> Optional[MembershipStatus]:
        for status in self.all_statuses():
            if status.name == name:
                return status
        return None

    def status_id(self, name: str) -> Optional[int]:
        """Resolve a status name to its identifier."""
        status = self.get_status_by_name(name)
        return status.id if status else None

    def status_name(self, status_id: int) -> Optional[str]:
        status = self.get_status(status_id)
        return status.name if status else None

    def status_ids(self) -> Set[int]:
        return {status.id for status in self.all_statuses()}


class MembershipTypeStore(ABC):
    """Read-only lookup of membership types."""

    @abstractmethod
    def get_type(self, type_id: int) -> Optional[MembershipType]:
        raise NotImplementedError

    @abstractmethod
    def all_types(self) -> List[MembershipType]:
        raise NotImplementedError

    def is_active(self, type_id: int) -> bool:
        """Unknown types count as inactive."""
        membership_type = self.get_type(type_id)
        return bool(membership_type and membership_type.is_active)


class MembershipStore(ABC):
    """
    Persistence for membership records.

    Implementations must return memberships ordered by id so that runs are
    deterministic.
    """

    @abstractmethod
    def find_memberships(
        self,
        exclude_status_ids: Optional[Iterable[int]] = None,
        is_test: Optional[bool] = None,
    ) -> List[Membership]:
        """
        Return memberships matching the given pre-filters.

        Args:
            exclude_status_ids: Status ids to leave out
            is_test: When set, only return memberships with this test flag

        Returns:
            List[Membership]: Matching memberships ordered by id
        """
        raise NotImplementedError

    @abstractmethod
    def get_membership(self, membership_id: int) -> Optional[Membership]:
        raise NotImplementedError

    @abstractmethod
    def update_status(
        self, membership_id: int, status_id: int, clear_override: bool = False
    ) -> Membership:
        """
        Set a membership's status.

        Args:
            membership_id: Membership to update
            status_id: New status id
            clear_override: Also drop a lapsed manual override

        Returns:
            Membership: The updated record

        Raises:
            StoreOperationError: If the record cannot be updated
        """
        raise NotImplementedError


class InMemoryStatusCatalog(StatusCatalog):
    def __init__(self, statuses: Iterable[MembershipStatus]):
        self._statuses = sorted(statuses, key=lambda s: (s.weight, s.id))

    def all_statuses(self) -> List[MembershipStatus]:
        return list(self._statuses)

    @classmethod
    def from_definitions(cls, definitions: Iterable[Dict[str, Any]]) -> "InMemoryStatusCatalog":
        """Build a catalog from status rows, e.g. the ``status_catalog`` config section."""
        return cls(MembershipStatus.from_db_dict(row) for row in definitions)

    @classmethod
    def default(cls) -> "InMemoryStatusCatalog":
        return cls.from_definitions(DEFAULT_STATUS_DEFINITIONS)


class InMemoryMembershipTypeStore(MembershipTypeStore):
    def __init__(self, types: Iterable[MembershipType]):
        self._types: Dict[int, MembershipType] = {t.id: t for t in types}

    def get_type(self, type_id: int) -> Optional[MembershipType]:
        return self._types.get(type_id)

    def all_types(self) -> List[MembershipType]:
        return [self._types[k] for k in sorted(self._types)]

    def set_active(self, type_id: int, is_active: bool) -> MembershipType:
        membership_type = self._types[type_id].model_copy(update={"is_active": is_active})
        self._types[type_id] = membership_type
        return membership_type


class InMemoryMembershipStore(MembershipStore):
    def __init__(self, memberships: Iterable[Membership] = ()):
        self._memberships: Dict[int, Membership] = {m.id: m for m in memberships}

    def add(self, membership: Membership) -> Membership:
        self._memberships[membership.id] = membership
        return membership

    def all_memberships(self) -> List[Membership]:
        return [self._memberships[k] for k in sorted(self._memberships)]

    def find_memberships(
        self,
        exclude_status_ids: Optional[Iterable[int]] = None,
        is_test: Optional[bool] = None,
    ) -> List[Membership]:
        excluded = set(exclude_status_ids or ())
        return [
            m
            for m in self.all_memberships()
            if m.status_id not in excluded and (is_test is None or m.is_test == is_test)
        ]

    def get_membership(self, membership_id: int) -> Optional[Membership]:
        return self._memberships.get(membership_id)

    def update_status(
        self, membership_id: int, status_id: int, clear_override: bool = False
    ) -> Membership:
        existing = self._memberships.get(membership_id)
        if existing is None:
            raise StoreOperationError(f"Membership {membership_id} not found")

        changes: Dict[str, Any] = {"status_id": status_id}
        if clear_override:
            changes.update(is_override=False, status_override_end_date=None)
        updated = existing.model_copy(update=changes)
        self._memberships[membership_id] = updated
        return updated


def load_snapshot(
    path: str,
) -> Tuple[InMemoryStatusCatalog, InMemoryMembershipTypeStore, InMemoryMembershipStore]:
    """
    Load the in-memory stores from a JSON snapshot file.

    The snapshot holds ``memberships``, ``membership_types`` and optionally
    ``membership_statuses``; the stock catalog is used when statuses are absent.

    Args:
        path: Path to the snapshot file

    Returns:
        Tuple of (status catalog, membership type store, membership store)
    """
    snapshot_path = Path(path)
    if not snapshot_path.exists():
        raise StoreOperationError(f"Membership snapshot not found: {snapshot_path}")

    try:
        with open(snapshot_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise StoreOperationError(f"Invalid membership snapshot {snapshot_path}: {e}") from e

    status_rows = data.get("membership_statuses")
    catalog = (
        InMemoryStatusCatalog.from_definitions(status_rows)
        if status_rows
        else InMemoryStatusCatalog.default()
    )
    types = InMemoryMembershipTypeStore(
        MembershipType.from_db_dict(row) for row in data.get("membership_types", [])
    )
    store = InMemoryMembershipStore(
        Membership.from_db_dict(row) for row in data.get("memberships", [])
    )

    logger.info(
        f"Loaded snapshot {snapshot_path}: {len(store.all_memberships())} memberships, "
        f"{len(types.all_types())} types, {len(catalog.all_statuses())} statuses"
    )
    return catalog, types, store


def save_snapshot(
    path: str,
    catalog: StatusCatalog,
    types: MembershipTypeStore,
    store: InMemoryMembershipStore,
) -> Path:
    """Write the in-memory stores back to a JSON snapshot file."""
    snapshot_path = Path(path)
    snapshot_path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "membership_statuses": [s.to_db_dict() for s in catalog.all_statuses()],
        "membership_types": [t.to_db_dict() for t in types.all_types()],
        "memberships": [m.to_db_dict() for m in store.all_memberships()],
    }
    with open(snapshot_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    logger.info(f"Saved snapshot to {snapshot_path}")
    return snapshot_path
