"""Shared fixtures: stock status catalog, membership types and a membership factory."""

import itertools
import os
import sys

import pytest

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from membership_status_processor.io.repository import (  # noqa: E402
    InMemoryMembershipStore,
    InMemoryMembershipTypeStore,
    InMemoryStatusCatalog,
)
from membership_status_processor.io.schema import Membership, MembershipType  # noqa: E402
from tests import GENERAL_TYPE_ID, LONG_AGO_JOIN_DATE, OLD_TYPE_ID  # noqa: E402


@pytest.fixture
def catalog():
    return InMemoryStatusCatalog.default()


@pytest.fixture
def type_store():
    return InMemoryMembershipTypeStore(
        [
            MembershipType(id=GENERAL_TYPE_ID, name="General", is_active=True),
            MembershipType(id=OLD_TYPE_ID, name="Old", is_active=False),
        ]
    )


@pytest.fixture
def store():
    return InMemoryMembershipStore()


@pytest.fixture
def membership_factory():
    """Build memberships with sequential ids and sensible defaults."""
    ids = itertools.count(1)

    def make(**overrides):
        membership_id = next(ids)
        data = {
            "id": membership_id,
            "contact_id": 100 + membership_id,
            "membership_type_id": GENERAL_TYPE_ID,
            "join_date": LONG_AGO_JOIN_DATE,
        }
        data.update(overrides)
        return Membership(**data)

    return make
