"""
Membership Selection Module

Determines which memberships a recalculation run examines, based on the
resolved request: excluded statuses, test records, inactive membership types
and manual status overrides.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging

from membership_status_processor.io.repository import MembershipStore, MembershipTypeStore
from membership_status_processor.io.schema import Membership
from membership_status_processor.pipeline.request import ResolvedRequest

logger = logging.getLogger(__name__)

SKIP_EXCLUDED_STATUS = "excluded_status"
SKIP_TEST_MEMBERSHIP = "test_membership"
SKIP_INACTIVE_TYPE = "inactive_type"
SKIP_STATUS_OVERRIDE = "status_override"


@dataclass
class SelectionResult:
    """Candidates of one run plus counts of what was left out and why."""

    candidates: List[Membership]
    total_scanned: int
    skipped: Dict[str, int] = field(default_factory=dict)


class MembershipSelector:
    """Selects the memberships a recalculation run should examine."""

    def __init__(self, store: MembershipStore, type_store: MembershipTypeStore):
        """
        Initialize the selector.

        Args:
            store: Membership store to read candidates from
            type_store: Membership type lookup for the is-active check
        """
        self.store = store
        self.type_store = type_store

    def skip_reason(self, membership: Membership, request: ResolvedRequest) -> Optional[str]:
        """
        Return why a membership is left out of the run, or None to include it.

        Args:
            membership: Membership to check
            request: Resolved run parameters

        Returns:
            Optional[str]: One of the ``SKIP_*`` reasons, or None
        """
        if membership.status_id in request.excluded_status_ids:
            return SKIP_EXCLUDED_STATUS

        if request.exclude_test_memberships and membership.is_test:
            return SKIP_TEST_MEMBERSHIP

        if request.only_active_membership_types and not self.type_store.is_active(
            membership.membership_type_id
        ):
            return SKIP_INACTIVE_TYPE

        if membership.is_override and not membership.override_lapsed(request.as_of):
            return SKIP_STATUS_OVERRIDE

        return None

    def should_process_membership(self, membership: Membership, request: ResolvedRequest) -> bool:
        return self.skip_reason(membership, request) is None

    def select(self, request: ResolvedRequest) -> SelectionResult:
        """
        Produce the ordered candidate set for a run.

        Status and test-flag filters are pushed down to the store; every rule
        is applied again here so stores may ignore the hints.

        Args:
            request: Resolved run parameters

        Returns:
            SelectionResult: Candidates ordered by membership id
        """
        memberships = self.store.find_memberships(
            exclude_status_ids=request.excluded_status_ids,
            is_test=False if request.exclude_test_memberships else None,
        )

        candidates: List[Membership] = []
        skipped: Counter = Counter()
        for membership in memberships:
            reason = self.skip_reason(membership, request)
            if reason is None:
                candidates.append(membership)
            else:
                skipped[reason] += 1

        candidates.sort(key=lambda m: m.id)

        logger.info(
            f"Selected {len(candidates)}/{len(memberships)} memberships for recalculation"
        )
        if skipped:
            logger.info(f"Skipped memberships by reason: {dict(skipped)}")

        return SelectionResult(
            candidates=candidates,
            total_scanned=len(memberships),
            skipped=dict(skipped),
        )


def create_membership_selector(
    store: MembershipStore, type_store: MembershipTypeStore
) -> MembershipSelector:
    """
    Factory function to create a MembershipSelector instance.

    Args:
        store: Membership store
        type_store: Membership type store

    Returns:
        MembershipSelector: Configured selector
    """
    return MembershipSelector(store, type_store)
