"""
Status Calculation Module

Works out a membership's natural status from the status catalog's date rules
and turns a difference from its current status into an update instruction.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import List, Optional, Tuple
import logging

from dateutil.relativedelta import relativedelta

from membership_status_processor.io.repository import StatusCatalog
from membership_status_processor.io.schema import (
    AdjustUnit,
    Membership,
    MembershipStatus,
    StatusBoundary,
    StatusRule,
    StatusUpdate,
)
from membership_status_processor.pipeline.request import DECEASED_STATUS_NAME

logger = logging.getLogger(__name__)


class StatusQualifier(ABC):
    """Decides whether a membership qualifies for one status."""

    @abstractmethod
    def qualifies(self, membership: Membership, as_of: date) -> bool:
        raise NotImplementedError


class AdminQualifier(StatusQualifier):
    """Manually assigned statuses (Pending, Cancelled, Deceased) never qualify."""

    def qualifies(self, membership: Membership, as_of: date) -> bool:
        return False


class DateRuleQualifier(StatusQualifier):
    """
    Qualifies memberships whose dates put ``as_of`` inside the rule's window.

    A boundary anchored to a date the membership does not have is treated as
    unset, so a lifetime membership (no end date) stays in a status whose
    window is open-ended on that side.
    """

    def __init__(self, rule: StatusRule):
        self.rule = rule

    @staticmethod
    def boundary_date(boundary: Optional[StatusBoundary], membership: Membership) -> Optional[date]:
        if boundary is None:
            return None
        anchor = membership.event_date(boundary.event)
        if anchor is None:
            return None
        if not boundary.interval:
            return anchor
        if boundary.unit == AdjustUnit.DAY:
            return anchor + relativedelta(days=boundary.interval)
        if boundary.unit == AdjustUnit.MONTH:
            return anchor + relativedelta(months=boundary.interval)
        return anchor + relativedelta(years=boundary.interval)

    def window(self, membership: Membership) -> Tuple[Optional[date], Optional[date]]:
        return (
            self.boundary_date(self.rule.start, membership),
            self.boundary_date(self.rule.end, membership),
        )

    def qualifies(self, membership: Membership, as_of: date) -> bool:
        start, end = self.window(membership)
        if start is not None and end is not None:
            return start <= as_of <= end
        if start is not None:
            return as_of >= start
        if end is not None:
            return as_of <= end
        return False


def qualifier_for(status: MembershipStatus) -> StatusQualifier:
    """Pick the qualifier variant for a status."""
    if status.is_admin or not status.rule.is_dated:
        return AdminQualifier()
    return DateRuleQualifier(status.rule)


class StatusRecalculator:
    """
    Computes natural statuses and the updates needed to reach them.

    Only active, non-admin statuses other than Deceased take part, tried in
    ascending weight; the first one whose rule qualifies is the natural status.
    """

    def __init__(self, catalog: StatusCatalog):
        self.catalog = catalog
        self._ranked: List[Tuple[MembershipStatus, StatusQualifier]] = [
            (status, qualifier_for(status))
            for status in sorted(catalog.all_statuses(), key=lambda s: (s.weight, s.id))
            if status.is_active
            and not status.is_admin
            and status.name != DECEASED_STATUS_NAME
        ]
        logger.debug(
            f"Status precedence: {[status.name for status, _ in self._ranked]}"
        )

    def natural_status(self, membership: Membership, as_of: date) -> Optional[MembershipStatus]:
        """
        Return the first status the membership qualifies for as of ``as_of``.

        Args:
            membership: Membership to evaluate
            as_of: Reference date

        Returns:
            Optional[MembershipStatus]: The natural status, or None when no rule matches
        """
        for status, qualifier in self._ranked:
            if qualifier.qualifies(membership, as_of):
                return status
        return None

    @staticmethod
    def build_update(
        membership: Membership,
        natural: MembershipStatus,
        clear_override: bool = False,
    ) -> Optional[StatusUpdate]:
        """Update instruction for a membership, or None when nothing changes."""
        if natural.id == membership.status_id and not clear_override:
            return None
        return StatusUpdate(
            membership_id=membership.id,
            from_status_id=membership.status_id,
            to_status_id=natural.id,
            clear_override=clear_override,
        )

    def recalculate(
        self, membership: Membership, as_of: date, clear_override: bool = False
    ) -> Optional[StatusUpdate]:
        """
        Decide whether a membership's status has to change.

        Args:
            membership: Candidate membership
            as_of: Reference date
            clear_override: The membership carries a lapsed override to drop

        Returns:
            Optional[StatusUpdate]: Instruction to apply, or None for a no-op
        """
        natural = self.natural_status(membership, as_of)
        if natural is None:
            return None
        return self.build_update(membership, natural, clear_override)
