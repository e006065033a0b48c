"""
Test package for the Membership Status Processor

This package contains unit tests, integration tests, CLI tests and
observability tests for the membership status recalculation job.
"""

from datetime import date

# Fixed reference date for date-rule tests
AS_OF = date(2024, 6, 15)

# Join date used for memberships that should never qualify as "New"
LONG_AGO_JOIN_DATE = date(2006, 1, 21)

# Status ids of the stock catalog
NEW_ID = 1
CURRENT_ID = 2
GRACE_ID = 3
EXPIRED_ID = 4
PENDING_ID = 5
CANCELLED_ID = 6
DECEASED_ID = 7

# Membership types created by the shared fixtures
GENERAL_TYPE_ID = 1
OLD_TYPE_ID = 2

__all__ = [
    "AS_OF",
    "LONG_AGO_JOIN_DATE",
    "NEW_ID",
    "CURRENT_ID",
    "GRACE_ID",
    "EXPIRED_ID",
    "PENDING_ID",
    "CANCELLED_ID",
    "DECEASED_ID",
    "GENERAL_TYPE_ID",
    "OLD_TYPE_ID",
]
