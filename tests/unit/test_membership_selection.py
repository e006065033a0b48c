"""
Tests for membership selection filters.
"""

from datetime import date

from membership_status_processor.io.repository import InMemoryMembershipStore
from membership_status_processor.io.schema import RecalculationRequest
from membership_status_processor.pipeline.filters import (
    SKIP_EXCLUDED_STATUS,
    SKIP_INACTIVE_TYPE,
    SKIP_STATUS_OVERRIDE,
    SKIP_TEST_MEMBERSHIP,
    MembershipSelector,
)
from membership_status_processor.pipeline.request import resolve_request
from tests import (
    AS_OF,
    CANCELLED_ID,
    CURRENT_ID,
    DECEASED_ID,
    EXPIRED_ID,
    GRACE_ID,
    OLD_TYPE_ID,
)


def _resolve(catalog, **params):
    return resolve_request(RecalculationRequest(as_of=AS_OF, **params), catalog)


class UnfilteredStore(InMemoryMembershipStore):
    """Ignores the store-level hints and returns records newest first."""

    def find_memberships(self, exclude_status_ids=None, is_test=None):
        return list(reversed(self.all_memberships()))


class TestSkipReasons:
    def test_excluded_status(self, catalog, type_store, store, membership_factory):
        selector = MembershipSelector(store, type_store)
        request = _resolve(catalog)

        for status_id in (CANCELLED_ID, EXPIRED_ID, DECEASED_ID):
            membership = membership_factory(status_id=status_id)
            assert selector.skip_reason(membership, request) == SKIP_EXCLUDED_STATUS

    def test_deceased_excluded_even_with_empty_list(self, catalog, type_store, store, membership_factory):
        selector = MembershipSelector(store, type_store)
        request = _resolve(catalog, exclude_membership_status_ids=[])

        assert selector.skip_reason(membership_factory(status_id=DECEASED_ID), request) == SKIP_EXCLUDED_STATUS
        assert selector.skip_reason(membership_factory(status_id=EXPIRED_ID), request) is None

    def test_test_membership(self, catalog, type_store, store, membership_factory):
        selector = MembershipSelector(store, type_store)
        membership = membership_factory(status_id=CURRENT_ID, is_test=True)

        assert selector.skip_reason(membership, _resolve(catalog)) == SKIP_TEST_MEMBERSHIP
        included = _resolve(catalog, exclude_test_memberships=False)
        assert selector.skip_reason(membership, included) is None

    def test_inactive_type(self, catalog, type_store, store, membership_factory):
        selector = MembershipSelector(store, type_store)
        membership = membership_factory(status_id=CURRENT_ID, membership_type_id=OLD_TYPE_ID)

        assert selector.skip_reason(membership, _resolve(catalog)) == SKIP_INACTIVE_TYPE
        included = _resolve(catalog, only_active_membership_types=False)
        assert selector.skip_reason(membership, included) is None

    def test_unknown_type_counts_as_inactive(self, catalog, type_store, store, membership_factory):
        selector = MembershipSelector(store, type_store)
        membership = membership_factory(status_id=CURRENT_ID, membership_type_id=42)

        assert selector.skip_reason(membership, _resolve(catalog)) == SKIP_INACTIVE_TYPE

    def test_overrides(self, catalog, type_store, store, membership_factory):
        selector = MembershipSelector(store, type_store)
        request = _resolve(catalog)

        permanent = membership_factory(status_id=GRACE_ID, is_override=True)
        active = membership_factory(
            status_id=GRACE_ID, is_override=True, status_override_end_date=date(2024, 7, 1)
        )
        lapsed_today = membership_factory(
            status_id=GRACE_ID, is_override=True, status_override_end_date=AS_OF
        )

        assert selector.skip_reason(permanent, request) == SKIP_STATUS_OVERRIDE
        assert selector.skip_reason(active, request) == SKIP_STATUS_OVERRIDE
        assert selector.skip_reason(lapsed_today, request) is None
        assert selector.should_process_membership(lapsed_today, request) is True


def test_select_counts_and_orders(catalog, type_store, store, membership_factory):
    store.add(membership_factory(status_id=CURRENT_ID))
    store.add(membership_factory(status_id=CANCELLED_ID))
    store.add(membership_factory(status_id=CURRENT_ID, is_test=True))
    store.add(membership_factory(status_id=CURRENT_ID, membership_type_id=OLD_TYPE_ID))
    store.add(membership_factory(status_id=GRACE_ID, is_override=True))
    store.add(membership_factory(status_id=GRACE_ID))

    result = MembershipSelector(store, type_store).select(_resolve(catalog))

    assert [m.id for m in result.candidates] == [1, 6]
    # Status and test-flag filters are applied by the store before scanning
    assert result.total_scanned == 4
    assert result.skipped == {SKIP_INACTIVE_TYPE: 1, SKIP_STATUS_OVERRIDE: 1}


def test_select_reapplies_filters_the_store_ignored(catalog, type_store, membership_factory):
    store = UnfilteredStore()
    store.add(membership_factory(status_id=CURRENT_ID))
    store.add(membership_factory(status_id=DECEASED_ID))
    store.add(membership_factory(status_id=CURRENT_ID, is_test=True))
    store.add(membership_factory(status_id=GRACE_ID))

    result = MembershipSelector(store, type_store).select(_resolve(catalog))

    assert [m.id for m in result.candidates] == [1, 4]
    assert result.total_scanned == 4
    assert result.skipped == {SKIP_EXCLUDED_STATUS: 1, SKIP_TEST_MEMBERSHIP: 1}
