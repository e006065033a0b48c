"""
Supabase-backed membership stores.

This module provides the status catalog, membership type store and membership
store on top of the CRM membership tables held in Supabase.
"""

import os
import time
from datetime import datetime, timedelta
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional
import logging

from supabase import create_client, Client
from postgrest.exceptions import APIError

from membership_status_processor.errors import StoreConnectionError, StoreOperationError
from membership_status_processor.io.repository import (
    MembershipStore,
    MembershipTypeStore,
    StatusCatalog,
)
from membership_status_processor.io.schema import (
    Membership,
    MembershipStatus,
    MembershipType,
)

logger = logging.getLogger(__name__)

DEFAULT_TABLES = {
    "memberships": "civicrm_membership",
    "membership_types": "civicrm_membership_type",
    "membership_statuses": "civicrm_membership_status",
}


def retry_on_failure(max_retries: int = 3, delay: float = 1.0, backoff: float = 2.0):
    """Decorator to retry failed read operations with exponential backoff."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except (APIError, ConnectionError) as e:
                    last_exception = e
                    if attempt < max_retries - 1:
                        wait_time = delay * (backoff**attempt)
                        logger.warning(
                            f"Operation failed (attempt {attempt + 1}/{max_retries}), "
                            f"retrying in {wait_time}s: {str(e)}"
                        )
                        time.sleep(wait_time)
                    else:
                        logger.error(f"Operation failed after {max_retries} attempts: {str(e)}")

            raise StoreOperationError(
                f"Operation failed after {max_retries} attempts. Last error: {str(last_exception)}"
            )

        return wrapper

    return decorator


class SupabaseConnection:
    """
    Shared Supabase client for the membership tables.

    Credentials default to the ``SUPABASE_URL`` and
    ``SUPABASE_SERVICE_ROLE_KEY`` environment variables.
    """

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
        tables: Optional[Dict[str, str]] = None,
        page_size: int = 1000,
        client: Optional[Client] = None,
    ):
        self.supabase_url = supabase_url or os.getenv("SUPABASE_URL")
        self.supabase_key = supabase_key or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        self.tables = {**DEFAULT_TABLES, **(tables or {})}
        self.page_size = max(1, int(page_size))
        self._client: Optional[Client] = client
        self._last_health_check: Optional[datetime] = None
        self._health_check_interval = timedelta(minutes=5)

        if self._client is None:
            if not self.supabase_url or not self.supabase_key:
                raise StoreConnectionError(
                    "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY environment variables must be set"
                )
            self._connect()

    def _connect(self) -> None:
        try:
            self._client = create_client(self.supabase_url, self.supabase_key)
            logger.info("Successfully connected to Supabase")
        except Exception as e:
            raise StoreConnectionError(f"Failed to connect to Supabase: {str(e)}") from e

    def health_check(self) -> bool:
        """Run a trivial query against the membership status table."""
        try:
            self.table("membership_statuses").select("id").limit(1).execute()
            self._last_health_check = datetime.now()
            logger.debug("Supabase health check passed")
            return True
        except Exception as e:
            logger.error(f"Supabase health check failed: {str(e)}")
            return False

    def ensure_connection(self) -> Client:
        if self._client is None:
            self._connect()
        if (
            self._last_health_check is None
            or datetime.now() - self._last_health_check > self._health_check_interval
        ):
            if not self.health_check():
                raise StoreConnectionError("Supabase connection is unhealthy")
        return self._client

    def table(self, key: str):
        return self._client.table(self.tables[key])

    def fetch_all(self, key: str, build_query=None) -> List[Dict[str, Any]]:
        """
        Page through a table and return every row.

        Args:
            key: Logical table key (see ``DEFAULT_TABLES``)
            build_query: Optional callable adding filters to the select query

        Returns:
            List[Dict[str, Any]]: Rows ordered by id
        """
        self.ensure_connection()
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            query = self.table(key).select("*")
            if build_query is not None:
                query = build_query(query)
            result = query.order("id").range(offset, offset + self.page_size - 1).execute()
            page = result.data or []
            rows.extend(page)
            if len(page) < self.page_size:
                break
            offset += self.page_size
        return rows


class SupabaseStatusCatalog(StatusCatalog):
    """Status catalog read once from the membership status table."""

    def __init__(self, connection: SupabaseConnection):
        self.connection = connection
        self._statuses: Optional[List[MembershipStatus]] = None

    @retry_on_failure(max_retries=3)
    def _load(self) -> List[MembershipStatus]:
        rows = self.connection.fetch_all("membership_statuses")
        statuses = [MembershipStatus.from_db_dict(row) for row in rows]
        logger.info(f"Loaded {len(statuses)} membership statuses from Supabase")
        return sorted(statuses, key=lambda s: (s.weight, s.id))

    def all_statuses(self) -> List[MembershipStatus]:
        if self._statuses is None:
            self._statuses = self._load()
        return list(self._statuses)


class SupabaseMembershipTypeStore(MembershipTypeStore):
    """Membership types read once from the membership type table."""

    def __init__(self, connection: SupabaseConnection):
        self.connection = connection
        self._types: Optional[Dict[int, MembershipType]] = None

    @retry_on_failure(max_retries=3)
    def _load(self) -> Dict[int, MembershipType]:
        rows = self.connection.fetch_all("membership_types")
        logger.info(f"Loaded {len(rows)} membership types from Supabase")
        return {row["id"]: MembershipType.from_db_dict(row) for row in rows}

    def _ensure_loaded(self) -> Dict[int, MembershipType]:
        if self._types is None:
            self._types = self._load()
        return self._types

    def get_type(self, type_id: int) -> Optional[MembershipType]:
        return self._ensure_loaded().get(type_id)

    def all_types(self) -> List[MembershipType]:
        types = self._ensure_loaded()
        return [types[k] for k in sorted(types)]


class SupabaseMembershipStore(MembershipStore):
    """Membership records in the Supabase membership table."""

    def __init__(self, connection: SupabaseConnection):
        self.connection = connection

    @retry_on_failure(max_retries=3)
    def find_memberships(
        self,
        exclude_status_ids: Optional[Iterable[int]] = None,
        is_test: Optional[bool] = None,
    ) -> List[Membership]:
        excluded = sorted(set(exclude_status_ids or ()))

        def build_query(query):
            if excluded:
                query = query.not_.in_("status_id", excluded)
            if is_test is not None:
                query = query.eq("is_test", is_test)
            return query

        rows = self.connection.fetch_all("memberships", build_query)
        logger.debug(f"Fetched {len(rows)} memberships (excluded statuses: {excluded})")
        return [Membership.from_db_dict(row) for row in rows]

    @retry_on_failure(max_retries=3)
    def get_membership(self, membership_id: int) -> Optional[Membership]:
        self.connection.ensure_connection()
        result = (
            self.connection.table("memberships")
            .select("*")
            .eq("id", membership_id)
            .limit(1)
            .execute()
        )
        if result.data:
            return Membership.from_db_dict(result.data[0])
        return None

    def update_status(
        self, membership_id: int, status_id: int, clear_override: bool = False
    ) -> Membership:
        # Single attempt: a failed update is reported by the job and retried on its next run.
        changes: Dict[str, Any] = {"status_id": status_id}
        if clear_override:
            changes.update(is_override=False, status_override_end_date=None)

        try:
            self.connection.ensure_connection()
            result = (
                self.connection.table("memberships")
                .update(changes)
                .eq("id", membership_id)
                .execute()
            )
        except StoreOperationError:
            raise
        except Exception as e:
            logger.error(f"Failed to update membership {membership_id}: {str(e)}")
            raise StoreOperationError(
                f"Failed to update membership {membership_id}: {str(e)}"
            ) from e

        if not result.data:
            raise StoreOperationError(f"Update of membership {membership_id} returned no data")
        return Membership.from_db_dict(result.data[0])


def create_supabase_stores(
    supabase_config: Optional[Dict[str, Any]] = None, client: Optional[Client] = None
):
    """
    Factory function to create the three Supabase-backed stores.

    Args:
        supabase_config: The ``store.supabase`` configuration section
        client: Optional pre-built Supabase client

    Returns:
        Tuple of (status catalog, membership type store, membership store)
    """
    supabase_config = supabase_config or {}
    connection = SupabaseConnection(
        supabase_url=supabase_config.get("url"),
        supabase_key=supabase_config.get("key"),
        tables=supabase_config.get("tables"),
        page_size=supabase_config.get("page_size", 1000),
        client=client,
    )
    return (
        SupabaseStatusCatalog(connection),
        SupabaseMembershipTypeStore(connection),
        SupabaseMembershipStore(connection),
    )
