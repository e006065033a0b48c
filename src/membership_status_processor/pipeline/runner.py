"""
Main Processing Pipeline

This module runs the membership status recalculation job: it resolves the
request, selects candidate memberships, recalculates their statuses, persists
the changes and reports the outcome. It also provides the command line entry
point.
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from dotenv import load_dotenv
from pydantic import ValidationError

from membership_status_processor.core.utils.logging import JobLogger, create_job_logger
from membership_status_processor.core.utils.run_summary import RunSummaryWriter
from membership_status_processor.errors import InvalidParameterError, MembershipStatusError
from membership_status_processor.io.repository import (
    InMemoryMembershipStore,
    InMemoryStatusCatalog,
    MembershipStore,
    MembershipTypeStore,
    StatusCatalog,
    load_snapshot,
    save_snapshot,
)
from membership_status_processor.io.schema import (
    RecalculationRequest,
    RecalculationSummary,
    RecordUpdateFailure,
    StatusUpdate,
)
from membership_status_processor.pipeline.calculator import StatusRecalculator
from membership_status_processor.pipeline.config import (
    ConfigLoader,
    JobDefaults,
    create_config_loader,
)
from membership_status_processor.pipeline.filters import create_membership_selector
from membership_status_processor.pipeline.request import ResolvedRequest, resolve_request

logger = logging.getLogger(__name__)


class MembershipStatusJob:
    """Recalculates membership statuses against the status catalog."""

    def __init__(
        self,
        catalog: StatusCatalog,
        type_store: MembershipTypeStore,
        store: MembershipStore,
        defaults: Optional[JobDefaults] = None,
        job_logger: Optional[JobLogger] = None,
        summary_dir: Optional[str] = None,
    ):
        """
        Initialize the job.

        Args:
            catalog: Status catalog lookup
            type_store: Membership type lookup
            store: Membership store read from and written to
            defaults: Defaults for unset request fields
            job_logger: Run logger; when None, messages go to whatever handlers the host configured
            summary_dir: Base directory for run summary artifacts (disabled when None)
        """
        self.catalog = catalog
        self.type_store = type_store
        self.store = store
        self.defaults = defaults or JobDefaults()
        self.job_logger = job_logger or create_job_logger(configure=False)
        self.summary_dir = summary_dir
        self.selector = create_membership_selector(store, type_store)

    def _status_name(self, status_id: int) -> str:
        return self.catalog.status_name(status_id) or str(status_id)

    def run(self, request: Optional[RecalculationRequest] = None) -> RecalculationSummary:
        """
        Run one recalculation pass.

        Args:
            request: Run parameters; unset fields take the configured defaults

        Returns:
            RecalculationSummary: Counts, updated ids and per-record failures

        Raises:
            InvalidParameterError: If the request names unknown status ids (nothing is written)
        """
        resolved = resolve_request(request, self.catalog, self.defaults)
        recalculator = StatusRecalculator(self.catalog)

        run_id = str(uuid4())
        summary = RecalculationSummary(run_id=run_id, as_of=resolved.as_of, dry_run=resolved.dry_run)
        rsw: Optional[RunSummaryWriter] = None
        if self.summary_dir:
            rsw = RunSummaryWriter(run_id=run_id, base_dir=self.summary_dir)

        parameters = self._describe(resolved)
        self.job_logger.log_run_start(run_id, parameters)
        if rsw:
            rsw.append_event({"event": "run_started", "parameters": parameters})

        selection = self.selector.select(resolved)
        summary.total_scanned = selection.total_scanned
        summary.total_examined = len(selection.candidates)
        summary.skipped = selection.skipped
        self.job_logger.log_selection(
            selection.total_scanned, len(selection.candidates), selection.skipped
        )

        for membership in selection.candidates:
            clear_override = membership.override_lapsed(resolved.as_of)
            natural = recalculator.natural_status(membership, resolved.as_of)
            if natural is None:
                summary.unresolved_ids.append(membership.id)
                self.job_logger.log_unresolved(membership.id)
                if not clear_override:
                    continue
                # Drop the lapsed pin, keep the status
                update = StatusUpdate(
                    membership_id=membership.id,
                    from_status_id=membership.status_id,
                    to_status_id=membership.status_id,
                    clear_override=True,
                )
            else:
                update = recalculator.build_update(membership, natural, clear_override)
                if update is None:
                    continue

            if not resolved.dry_run:
                try:
                    self.store.update_status(
                        update.membership_id,
                        update.to_status_id,
                        clear_override=update.clear_override,
                    )
                except Exception as e:
                    failure = RecordUpdateFailure(
                        membership_id=update.membership_id,
                        to_status_id=update.to_status_id,
                        error=str(e),
                    )
                    summary.failures.append(failure)
                    self.job_logger.log_update_failure(failure)
                    if rsw:
                        rsw.append_event({"event": "update_failed", **failure.model_dump()})
                    continue

            summary.updated_ids.append(update.membership_id)
            self.job_logger.log_status_update(
                update,
                self._status_name(update.from_status_id),
                self._status_name(update.to_status_id),
                resolved.dry_run,
            )
            if rsw:
                rsw.append_event({"event": "status_updated", **update.model_dump()})

        summary.total_updated = len(summary.updated_ids)
        summary.end_time = datetime.now()
        self.job_logger.log_run_end(summary)
        if rsw:
            rsw.write_final_summary(summary.to_report_dict())

        return summary

    def _describe(self, resolved: ResolvedRequest) -> Dict[str, Any]:
        return {
            "as_of": resolved.as_of.isoformat(),
            "dry_run": resolved.dry_run,
            "exclude_test_memberships": resolved.exclude_test_memberships,
            "only_active_membership_types": resolved.only_active_membership_types,
            "excluded_statuses": sorted(
                self._status_name(i) for i in resolved.excluded_status_ids
            ),
        }


def process_membership(
    catalog: StatusCatalog,
    type_store: MembershipTypeStore,
    store: MembershipStore,
    defaults: Optional[JobDefaults] = None,
    **params: Any,
) -> RecalculationSummary:
    """
    Run the job with request fields given as keyword arguments.

    Accepts ``exclude_test_memberships``, ``only_active_membership_types``,
    ``exclude_membership_status_ids``, ``dry_run`` and ``as_of``.

    Raises:
        InvalidParameterError: On unknown or malformed parameters
    """
    try:
        request = RecalculationRequest(**params)
    except ValidationError as e:
        raise InvalidParameterError(f"Invalid process_membership parameters: {e}") from e
    return MembershipStatusJob(catalog, type_store, store, defaults=defaults).run(request)


def create_stores(
    config_loader: ConfigLoader,
    backend: Optional[str] = None,
    data_path: Optional[str] = None,
) -> Tuple[StatusCatalog, MembershipTypeStore, MembershipStore]:
    """
    Build the catalog and stores for the configured backend.

    Args:
        config_loader: Loaded configuration
        backend: 'json' or 'supabase' (overrides config)
        data_path: JSON snapshot path (overrides config)

    Returns:
        Tuple of (status catalog, membership type store, membership store)
    """
    backend = (backend or config_loader.get_backend()).lower()

    if backend == "supabase":
        from membership_status_processor.io.supabase import create_supabase_stores

        return create_supabase_stores(config_loader.get_supabase_config())

    if backend != "json":
        raise MembershipStatusError(f"Unknown store backend: {backend}")

    catalog, types, store = load_snapshot(data_path or config_loader.get_json_store_path())
    catalog_rows = config_loader.get_status_catalog_config()
    if catalog_rows:
        catalog = InMemoryStatusCatalog.from_definitions(catalog_rows)
        logger.info(f"Using status catalog from configuration ({len(catalog_rows)} statuses)")
    return catalog, types, store


def _load_environment() -> None:
    """Load a .env file from the working directory or the project root, if present."""
    env_paths = [
        Path.cwd() / ".env",
        Path(__file__).parent.parent.parent.parent / ".env",
    ]
    for env_path in env_paths:
        if env_path.exists():
            load_dotenv(env_path)
            logger.info(f"Loaded environment variables from: {env_path}")
            return
    logger.debug("No .env file found, using system environment variables")


def _resolve_status_names(catalog: StatusCatalog, names: List[str]) -> List[int]:
    ids = []
    for name in names:
        status_id = catalog.status_id(name)
        if status_id is None:
            raise InvalidParameterError(
                f"Unknown membership status name: {name}",
                parameter="exclude_membership_status_ids",
                values=[name],
            )
        ids.append(status_id)
    return ids


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the membership status job."""
    import argparse

    parser = argparse.ArgumentParser(description="Recalculate membership statuses")
    parser.add_argument("--config", default="config/config.yaml", help="Configuration file path")
    parser.add_argument(
        "--backend", choices=["json", "supabase"], help="Membership store backend (overrides config)"
    )
    parser.add_argument("--data", help="JSON membership snapshot for the json backend")
    parser.add_argument(
        "--include-test-memberships",
        action="store_true",
        help="Also recalculate test memberships",
    )
    parser.add_argument(
        "--include-inactive-types",
        action="store_true",
        help="Also recalculate memberships of disabled membership types",
    )
    parser.add_argument(
        "--exclude-status",
        type=int,
        action="append",
        metavar="ID",
        help="Status id to leave untouched (repeatable; replaces the default list)",
    )
    parser.add_argument(
        "--exclude-status-name",
        action="append",
        metavar="NAME",
        help="Status name to leave untouched (repeatable; replaces the default list)",
    )
    parser.add_argument("--as-of", type=date.fromisoformat, help="Reference date (YYYY-MM-DD)")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without saving")
    parser.add_argument("--validate", action="store_true", help="Only validate configuration")
    parser.add_argument("--summary-dir", help="Write run summary artifacts under this directory")

    args = parser.parse_args(argv)
    _load_environment()

    job_logger: Optional[JobLogger] = None
    try:
        config_loader = create_config_loader(args.config)

        if args.validate:
            validation = config_loader.validate_configuration()
            print("Configuration Validation:")
            print(f"Valid: {validation['valid']}")
            for issue in validation["issues"]:
                print(f"  - issue: {issue}")
            for warning in validation["warnings"]:
                print(f"  - warning: {warning}")
            return 0 if validation["valid"] else 1

        job_logger = create_job_logger(config_loader.get_logging_config())
        backend = (args.backend or config_loader.get_backend()).lower()
        catalog, types, store = create_stores(config_loader, backend, args.data)

        exclude_ids: Optional[List[int]] = None
        if args.exclude_status or args.exclude_status_name:
            exclude_ids = list(args.exclude_status or [])
            exclude_ids += _resolve_status_names(catalog, args.exclude_status_name or [])

        request = RecalculationRequest(
            exclude_test_memberships=False if args.include_test_memberships else None,
            only_active_membership_types=False if args.include_inactive_types else None,
            exclude_membership_status_ids=exclude_ids,
            dry_run=args.dry_run,
            as_of=args.as_of,
        )

        summary_dir = args.summary_dir
        summary_config = config_loader.get_run_summary_config()
        if summary_dir is None and summary_config.get("enabled"):
            summary_dir = summary_config.get("base_dir")

        job = MembershipStatusJob(
            catalog,
            types,
            store,
            defaults=config_loader.get_job_defaults(),
            job_logger=job_logger,
            summary_dir=summary_dir,
        )
        summary = job.run(request)

        if backend == "json" and not args.dry_run and isinstance(store, InMemoryMembershipStore):
            save_snapshot(args.data or config_loader.get_json_store_path(), catalog, types, store)

        print("Membership status processing completed:")
        print(f"Examined: {summary.total_examined}")
        print(f"Updated: {summary.total_updated}{' (dry run)' if summary.dry_run else ''}")
        print(f"Unresolved: {len(summary.unresolved_ids)}")
        print(f"Failed: {summary.total_failed}")
        for failure in summary.failures[:3]:
            print(f"  - membership {failure.membership_id}: {failure.error}")

        report = job_logger.get_final_report()
        print(f"Duration: {report['summary_metrics']['total_duration_seconds']:.2f}s")
        for name, path in report["log_files"].items():
            print(f"{name}: {path}")

    except InvalidParameterError as e:
        logger.error(f"Invalid parameter: {str(e)}")
        print(f"Error: {str(e)}")
        return 2
    except Exception as e:
        logger.error(f"Error in main: {str(e)}")
        print(f"Error: {str(e)}")
        return 1
    finally:
        if job_logger is not None:
            job_logger.close()

    return 0


if __name__ == "__main__":
    exit(main())
