"""
Tests for natural status calculation from the catalog's date rules.
"""

from datetime import date

import pytest
from pydantic import ValidationError

from membership_status_processor.io.repository import (
    DEFAULT_STATUS_DEFINITIONS,
    InMemoryStatusCatalog,
)
from membership_status_processor.io.schema import AdjustUnit, StatusBoundary, StatusEvent
from membership_status_processor.pipeline.calculator import (
    AdminQualifier,
    DateRuleQualifier,
    StatusRecalculator,
    qualifier_for,
)
from tests import AS_OF, CURRENT_ID, DECEASED_ID, EXPIRED_ID, GRACE_ID, NEW_ID, PENDING_ID


def _natural_name(catalog, membership, as_of=AS_OF):
    status = StatusRecalculator(catalog).natural_status(membership, as_of)
    return status.name if status else None


def test_dates_spanning_reference_date_are_current(catalog, membership_factory):
    membership = membership_factory(
        status_id=GRACE_ID, start_date=date(2024, 1, 1), end_date=date(2024, 12, 31)
    )
    assert _natural_name(catalog, membership) == "Current"


def test_recently_ended_membership_is_grace(catalog, membership_factory):
    membership = membership_factory(
        status_id=CURRENT_ID, start_date=date(2023, 6, 1), end_date=date(2024, 6, 1)
    )
    assert _natural_name(catalog, membership) == "Grace"


def test_membership_ended_over_a_month_ago_is_expired(catalog, membership_factory):
    membership = membership_factory(
        status_id=CURRENT_ID, start_date=date(2023, 5, 1), end_date=date(2024, 4, 30)
    )
    assert _natural_name(catalog, membership) == "Expired"


def test_grace_wins_over_expired_on_shared_boundary(catalog, membership_factory):
    # Grace ends and Expired starts on end_date + 1 month; both windows are inclusive.
    membership = membership_factory(
        status_id=CURRENT_ID, start_date=date(2023, 5, 15), end_date=date(2024, 5, 15)
    )
    assert _natural_name(catalog, membership) == "Grace"
    assert _natural_name(catalog, membership, as_of=date(2024, 6, 16)) == "Expired"


def test_recent_join_is_new(catalog, membership_factory):
    membership = membership_factory(
        status_id=PENDING_ID,
        join_date=date(2024, 5, 1),
        start_date=date(2024, 5, 1),
        end_date=date(2025, 4, 30),
    )
    assert _natural_name(catalog, membership) == "New"
    assert _natural_name(catalog, membership, as_of=date(2024, 8, 2)) == "Current"


def test_missing_join_date_skips_new(catalog, membership_factory):
    membership = membership_factory(
        status_id=GRACE_ID,
        join_date=None,
        start_date=date(2024, 6, 14),
        end_date=date(2024, 6, 16),
    )
    assert _natural_name(catalog, membership) == "Current"


def test_lifetime_membership_stays_current(catalog, membership_factory):
    membership = membership_factory(
        status_id=GRACE_ID, start_date=date(2020, 1, 1), end_date=None
    )
    assert _natural_name(catalog, membership) == "Current"


def test_future_membership_has_no_natural_status(catalog, membership_factory):
    membership = membership_factory(
        status_id=PENDING_ID, start_date=date(2024, 7, 1), end_date=date(2025, 6, 30)
    )
    assert _natural_name(catalog, membership) is None


def test_inactive_status_is_skipped(membership_factory):
    rows = [dict(row) for row in DEFAULT_STATUS_DEFINITIONS]
    for row in rows:
        if row["name"] == "Current":
            row["is_active"] = False
    catalog = InMemoryStatusCatalog.from_definitions(rows)

    membership = membership_factory(
        status_id=GRACE_ID, start_date=date(2024, 1, 1), end_date=date(2024, 12, 31)
    )
    assert _natural_name(catalog, membership) is None


def test_deceased_is_never_a_natural_status(membership_factory):
    rows = [dict(row) for row in DEFAULT_STATUS_DEFINITIONS]
    for row in rows:
        if row["name"] == "Deceased":
            # Misconfigured: a dated, non-admin Deceased with top precedence
            row.update(is_admin=False, start_event="start_date", weight=0)
    catalog = InMemoryStatusCatalog.from_definitions(rows)

    membership = membership_factory(
        status_id=GRACE_ID, start_date=date(2024, 1, 1), end_date=date(2024, 12, 31)
    )
    assert _natural_name(catalog, membership) == "Current"


def test_admin_statuses_use_admin_qualifier(catalog):
    for name in ("Pending", "Cancelled", "Deceased"):
        assert isinstance(qualifier_for(catalog.get_status_by_name(name)), AdminQualifier)
    assert isinstance(qualifier_for(catalog.get_status_by_name("Grace")), DateRuleQualifier)


@pytest.mark.parametrize(
    "unit, interval, expected",
    [
        (AdjustUnit.DAY, 10, date(2024, 1, 11)),
        (AdjustUnit.DAY, -1, date(2023, 12, 31)),
        (AdjustUnit.MONTH, 1, date(2024, 2, 1)),
        (AdjustUnit.YEAR, 2, date(2026, 1, 1)),
    ],
)
def test_boundary_adjustment_units(membership_factory, unit, interval, expected):
    membership = membership_factory(status_id=CURRENT_ID, end_date=date(2024, 1, 1))
    boundary = StatusBoundary(event=StatusEvent.END_DATE, unit=unit, interval=interval)
    assert DateRuleQualifier.boundary_date(boundary, membership) == expected


def test_month_adjustment_clamps_to_month_end(membership_factory):
    membership = membership_factory(status_id=CURRENT_ID, end_date=date(2024, 1, 31))
    boundary = StatusBoundary(event=StatusEvent.END_DATE, unit=AdjustUnit.MONTH, interval=1)
    assert DateRuleQualifier.boundary_date(boundary, membership) == date(2024, 2, 29)


def test_boundary_interval_requires_unit():
    with pytest.raises(ValidationError):
        StatusBoundary(event=StatusEvent.END_DATE, interval=3)


class TestRecalculate:
    def test_status_change_emits_update(self, catalog, membership_factory):
        membership = membership_factory(
            status_id=GRACE_ID, start_date=date(2024, 1, 1), end_date=date(2024, 12, 31)
        )
        update = StatusRecalculator(catalog).recalculate(membership, AS_OF)

        assert update is not None
        assert update.membership_id == membership.id
        assert update.from_status_id == GRACE_ID
        assert update.to_status_id == CURRENT_ID
        assert update.clear_override is False

    def test_correct_status_is_a_no_op(self, catalog, membership_factory):
        membership = membership_factory(
            status_id=CURRENT_ID, start_date=date(2024, 1, 1), end_date=date(2024, 12, 31)
        )
        assert StatusRecalculator(catalog).recalculate(membership, AS_OF) is None

    def test_unresolved_membership_is_a_no_op(self, catalog, membership_factory):
        membership = membership_factory(
            status_id=NEW_ID, start_date=date(2025, 1, 1), end_date=date(2025, 12, 31)
        )
        assert StatusRecalculator(catalog).recalculate(membership, AS_OF) is None

    def test_clearing_override_forces_update(self, catalog, membership_factory):
        membership = membership_factory(
            status_id=CURRENT_ID, start_date=date(2024, 1, 1), end_date=date(2024, 12, 31)
        )
        update = StatusRecalculator(catalog).recalculate(membership, AS_OF, clear_override=True)

        assert update is not None
        assert update.changes_status is False
        assert update.clear_override is True

    def test_never_targets_deceased(self, catalog, membership_factory):
        membership = membership_factory(
            status_id=CURRENT_ID, start_date=date(2020, 1, 1), end_date=date(2020, 12, 31)
        )
        update = StatusRecalculator(catalog).recalculate(membership, AS_OF)
        assert update.to_status_id == EXPIRED_ID
        assert update.to_status_id != DECEASED_ID
