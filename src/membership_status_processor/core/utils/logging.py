"""
Job logging for the Membership Status Processor.
Provides colored console output, rotating log files and per-run counters.
"""

import sys
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import colorlog

from membership_status_processor.io.schema import (
    RecalculationSummary,
    RecordUpdateFailure,
    StatusUpdate,
)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
PACKAGE_LOGGER_NAME = "membership_status_processor"


class JobMetrics:
    """Counts what happened during one recalculation run"""

    def __init__(self):
        self.start_time: Optional[datetime] = None
        self.counters = {
            "memberships_scanned": 0,
            "memberships_examined": 0,
            "statuses_updated": 0,
            "updates_failed": 0,
            "unresolved": 0,
        }

    def start(self):
        self.start_time = datetime.now()

    def increment(self, name: str, amount: int = 1):
        self.counters[name] = self.counters.get(name, 0) + amount

    def get_current_metrics(self) -> Dict[str, Any]:
        duration = 0.0
        if self.start_time:
            duration = (datetime.now() - self.start_time).total_seconds()
        return {**self.counters, "total_duration_seconds": duration}


class JobLogger:
    """
    Logging for recalculation runs: console, main log file and error log file.

    Handlers are attached to the package logger, so messages from every
    ``membership_status_processor.*`` module land in the same outputs. With
    ``configure=False`` the logger's handlers and level are left as the host
    application set them.
    """

    def __init__(self, config: Dict[str, Any], configure: bool = True):
        self.config = config
        self.configure = configure
        self.log_dir: Optional[Path] = None
        if configure:
            log_dir = config.get("log_dir", "var/logs")
            self.log_dir = Path(log_dir) if log_dir else None
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        self.metrics = JobMetrics()
        self.logger = logging.getLogger(config.get("name", PACKAGE_LOGGER_NAME))
        if configure:
            self._setup_loggers()

    def _setup_loggers(self):
        self.logger.setLevel(getattr(logging, str(self.config.get("level", "INFO")).upper()))
        self.close()

        if self.config.get("console", True):
            console_handler = colorlog.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(
                colorlog.ColoredFormatter(
                    "%(log_color)s" + LOG_FORMAT,
                    datefmt="%H:%M:%S",
                    log_colors={
                        "DEBUG": "cyan",
                        "INFO": "green",
                        "WARNING": "yellow",
                        "ERROR": "red",
                        "CRITICAL": "purple",
                    },
                )
            )
            self.logger.addHandler(console_handler)

        if self.log_dir is None:
            return

        file_formatter = logging.Formatter(FILE_FORMAT)

        main_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / "membership_status.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        main_handler.setLevel(logging.DEBUG)
        main_handler.setFormatter(file_formatter)
        self.logger.addHandler(main_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / "errors.log",
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        self.logger.addHandler(error_handler)

    def close(self):
        if not self.configure:
            return
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)

    def log_run_start(self, run_id: str, parameters: Dict[str, Any]):
        self.metrics = JobMetrics()
        self.metrics.start()
        self.logger.info(f"RUN {run_id} | process_membership started")
        for key, value in parameters.items():
            self.logger.info(f"   {key}: {value}")

    def log_selection(self, scanned: int, examined: int, skipped: Dict[str, int]):
        self.metrics.increment("memberships_scanned", scanned)
        self.metrics.increment("memberships_examined", examined)
        self.logger.info(f"Selected {examined} of {scanned} memberships")
        for reason, count in sorted(skipped.items()):
            self.logger.info(f"   skipped ({reason}): {count}")

    def log_status_update(self, update: StatusUpdate, from_name: str, to_name: str, dry_run: bool):
        self.metrics.increment("statuses_updated")
        prefix = "[DRY RUN] " if dry_run else ""
        override = " (override cleared)" if update.clear_override else ""
        self.logger.info(
            f"{prefix}Membership {update.membership_id}: {from_name} -> {to_name}{override}"
        )

    def log_unresolved(self, membership_id: int):
        self.metrics.increment("unresolved")
        self.logger.debug(f"Membership {membership_id}: no status rule matches, left unchanged")

    def log_update_failure(self, failure: RecordUpdateFailure):
        self.metrics.increment("updates_failed")
        self.logger.error(
            f"Membership {failure.membership_id}: update to status {failure.to_status_id} "
            f"failed: {failure.error}"
        )

    def log_run_end(self, summary: RecalculationSummary):
        status = "completed" if not summary.failures else "completed with failures"
        metrics = self.metrics.get_current_metrics()
        self.logger.info(
            f"RUN {summary.run_id} | {status} in {metrics['total_duration_seconds']:.2f}s"
        )
        for name, value in self.metrics.counters.items():
            self.logger.info(f"   {name}: {value}")

    def get_final_report(self) -> Dict[str, Any]:
        log_files = {}
        if self.log_dir is not None:
            log_files = {
                "main_log": str(self.log_dir / "membership_status.log"),
                "error_log": str(self.log_dir / "errors.log"),
            }
        return {"summary_metrics": self.metrics.get_current_metrics(), "log_files": log_files}


def create_job_logger(config: Optional[Dict[str, Any]] = None, configure: bool = True) -> JobLogger:
    """Factory function to create the job logger"""
    return JobLogger(config or {}, configure=configure)
