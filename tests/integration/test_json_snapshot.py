"""
Integration tests for the JSON snapshot store.
"""

import json
from datetime import date

import pytest

from membership_status_processor.errors import StoreOperationError
from membership_status_processor.io.repository import load_snapshot, save_snapshot
from membership_status_processor.io.schema import RecalculationRequest
from membership_status_processor.pipeline.runner import MembershipStatusJob
from tests import AS_OF, CURRENT_ID, GRACE_ID, OLD_TYPE_ID


def test_save_and_load_keep_override_fields(tmp_path, catalog, type_store, store, membership_factory):
    store.add(membership_factory(status_id=CURRENT_ID, start_date=date(2024, 1, 1), end_date=None))
    store.add(
        membership_factory(
            status_id=GRACE_ID,
            membership_type_id=OLD_TYPE_ID,
            is_override=True,
            status_override_end_date=date(2024, 7, 1),
        )
    )
    path = tmp_path / "snapshot.json"

    save_snapshot(str(path), catalog, type_store, store)
    loaded_catalog, loaded_types, loaded_store = load_snapshot(str(path))

    assert loaded_store.all_memberships() == store.all_memberships()
    assert loaded_types.is_active(OLD_TYPE_ID) is False
    assert [s.name for s in loaded_catalog.all_statuses()] == [
        s.name for s in catalog.all_statuses()
    ]


def test_snapshot_without_statuses_uses_stock_catalog(tmp_path):
    path = tmp_path / "snapshot.json"
    path.write_text(
        json.dumps(
            {
                "membership_types": [{"id": 1, "name": "General"}],
                "memberships": [
                    {
                        "id": 1,
                        "contact_id": 9,
                        "membership_type_id": 1,
                        "status_id": GRACE_ID,
                        "start_date": "2024-01-01",
                        "end_date": "2024-12-31",
                    }
                ],
            }
        ),
        encoding="utf-8",
    )

    catalog, types, store = load_snapshot(str(path))
    summary = MembershipStatusJob(catalog, types, store).run(RecalculationRequest(as_of=AS_OF))

    assert catalog.status_id("Deceased") == 7
    assert summary.updated_ids == [1]
    assert store.get_membership(1).status_id == CURRENT_ID


def test_missing_snapshot_raises(tmp_path):
    with pytest.raises(StoreOperationError, match="not found"):
        load_snapshot(str(tmp_path / "missing.json"))


def test_corrupt_snapshot_raises(tmp_path):
    path = tmp_path / "snapshot.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(StoreOperationError, match="Invalid membership snapshot"):
        load_snapshot(str(path))
