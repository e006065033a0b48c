"""
Request resolution for recalculation runs.

Turns a partially filled RecalculationRequest into the fully resolved
parameters of one run: defaults applied, status names looked up in the
catalog, explicit status ids validated, and Deceased always excluded.
"""

from datetime import date
from typing import FrozenSet, List, Optional
import logging

from pydantic import BaseModel, ConfigDict

from membership_status_processor.errors import InvalidParameterError
from membership_status_processor.io.repository import StatusCatalog
from membership_status_processor.io.schema import RecalculationRequest
from membership_status_processor.pipeline.config import JobDefaults

logger = logging.getLogger(__name__)

# Deceased is terminal and assigned by hand; recalculation never touches it.
DECEASED_STATUS_NAME = "Deceased"


class ResolvedRequest(BaseModel):
    """Parameters of one run after defaults and lookups."""

    model_config = ConfigDict(frozen=True)

    exclude_test_memberships: bool
    only_active_membership_types: bool
    requested_status_ids: FrozenSet[int]
    excluded_status_ids: FrozenSet[int]
    deceased_status_id: Optional[int] = None
    dry_run: bool = False
    as_of: date


def _default_status_ids(catalog: StatusCatalog, names: List[str]) -> List[int]:
    ids = []
    for name in names:
        status_id = catalog.status_id(name)
        if status_id is None:
            logger.warning(f"Default excluded status '{name}' not found in catalog, ignoring")
            continue
        ids.append(status_id)
    return ids


def resolve_request(
    request: Optional[RecalculationRequest],
    catalog: StatusCatalog,
    defaults: Optional[JobDefaults] = None,
) -> ResolvedRequest:
    """
    Resolve a recalculation request against the catalog and defaults.

    Args:
        request: Request as received; None means all defaults
        catalog: Status catalog used for name lookups and validation
        defaults: Configured defaults (stock defaults when None)

    Returns:
        ResolvedRequest: The effective run parameters

    Raises:
        InvalidParameterError: If an explicit excluded status id is not in the catalog
    """
    request = request or RecalculationRequest()
    defaults = defaults or JobDefaults()

    if request.exclude_membership_status_ids is None:
        requested = _default_status_ids(catalog, defaults.excluded_status_names)
    else:
        known = catalog.status_ids()
        unknown = [i for i in request.exclude_membership_status_ids if i not in known]
        if unknown:
            raise InvalidParameterError(
                f"Unknown membership status id(s) in exclude_membership_status_ids: {unknown}",
                parameter="exclude_membership_status_ids",
                values=unknown,
            )
        requested = list(request.exclude_membership_status_ids)

    deceased_id = catalog.status_id(DECEASED_STATUS_NAME)
    excluded = set(requested)
    if deceased_id is None:
        logger.warning(f"Status catalog has no '{DECEASED_STATUS_NAME}' status")
    else:
        excluded.add(deceased_id)

    return ResolvedRequest(
        exclude_test_memberships=(
            defaults.exclude_test_memberships
            if request.exclude_test_memberships is None
            else request.exclude_test_memberships
        ),
        only_active_membership_types=(
            defaults.only_active_membership_types
            if request.only_active_membership_types is None
            else request.only_active_membership_types
        ),
        requested_status_ids=frozenset(requested),
        excluded_status_ids=frozenset(excluded),
        deceased_status_id=deceased_id,
        dry_run=request.dry_run,
        as_of=request.as_of or date.today(),
    )
