"""
Retention sweeper.

Permanently deletes every soft-deleted record whose restore window has
elapsed, table by table in dependency order, and trims the audit log to its
own retention period. Runs on a recurring asyncio task or on demand.
"""

import asyncio
import logging
from datetime import datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

import pytz
from sqlalchemy.exc import SQLAlchemyError

from ..audit_trail import SYSTEM_TARGET, AuditAction
from ..config import RETENTION_WINDOW_DAYS, RetentionConfig
from .exceptions import CascadeFailure
from .mixins import RETENTION_WINDOW
from .models import SweepReport, SweepStatus, SweepTrigger
from .registry import EntityType
from .services import LifecycleManager

logger = logging.getLogger(__name__)

AUDIT_LOG_KEY = "audit_log"


class RetentionSweeper:
    """
    Purges records deleted more than the retention window ago.

    Only one sweep runs at a time per sweeper; a call made while another sweep
    holds the lock returns a skipped report. Each record is purged in its own
    transaction, so an interrupted sweep simply leaves the remaining records
    for the next one.

    Example:
        >>> sweeper = RetentionSweeper(lifecycle)
        >>> report = await sweeper.manual_sweep("admin-1", reason="disk space")
        >>> report.counts["post"]
        3
    """

    def __init__(
        self,
        lifecycle: LifecycleManager,
        config: Optional[RetentionConfig] = None,
    ):
        self.lifecycle = lifecycle
        self.audit_logger = lifecycle.audit_logger
        self.registry = lifecycle.registry
        self.clock = lifecycle.clock
        self.config = config or lifecycle.config

        self.last_sweep_time: Optional[datetime] = None
        self.last_report: Optional[SweepReport] = None

        self._lock = asyncio.Lock()
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_sweep(
        self,
        trigger: SweepTrigger = SweepTrigger.SCHEDULED,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> SweepReport:
        """
        Run one sweep.

        Args:
            trigger: Scheduled or manual
            actor_id: Actor of a manual sweep; None for the scheduler
            reason: Free-text reason recorded on the sweep entries

        Returns:
            Report with per-table purge counts and failures
        """
        trigger = SweepTrigger(trigger)

        if self._lock.locked():
            logger.info(
                f"Retention sweep already in progress; {trigger.value} run skipped"
            )
            return SweepReport(
                trigger=trigger,
                actor_id=actor_id,
                skipped=True,
                started_at=self.clock(),
            )

        async with self._lock:
            try:
                return await self._sweep(trigger, actor_id, reason)
            except Exception as e:
                logger.error(f"Retention sweep aborted: {e}")
                await self.audit_logger.log_action(
                    AuditAction.SWEEP_ERROR,
                    target_table=SYSTEM_TARGET,
                    actor_id=actor_id,
                    reason=reason,
                    metadata={"trigger": trigger.value, "error": str(e)},
                )
                raise

    async def manual_sweep(
        self, actor_id: str, reason: Optional[str] = None
    ) -> SweepReport:
        """Run a sweep on behalf of an administrator."""
        if not actor_id or not actor_id.strip():
            raise ValueError("Actor ID is required for a manual sweep")
        return await self.run_sweep(
            SweepTrigger.MANUAL, actor_id=actor_id.strip(), reason=reason
        )

    async def _sweep(
        self,
        trigger: SweepTrigger,
        actor_id: Optional[str],
        reason: Optional[str],
    ) -> SweepReport:
        started_at = self.clock()
        cutoff = started_at - RETENTION_WINDOW

        logger.info(
            f"Starting {trigger.value} retention sweep for records deleted "
            f"before {cutoff.isoformat()}"
        )
        await self.audit_logger.log_action(
            AuditAction.SWEEP_START,
            target_table=SYSTEM_TARGET,
            actor_id=actor_id,
            reason=reason,
            metadata={"trigger": trigger.value, "cutoff": cutoff.isoformat()},
        )

        counts: Dict[str, int] = {}
        errors: Dict[str, List[str]] = {}

        for entity_type in self.registry.sweep_order():
            purged, failures = await self._sweep_table(entity_type, cutoff, actor_id)
            counts[entity_type.value] = purged
            if failures:
                errors[entity_type.value] = failures
                logger.warning(
                    f"Retention sweep of {entity_type.value} had "
                    f"{len(failures)} failures"
                )
                await self.audit_logger.log_action(
                    AuditAction.SWEEP_ERROR,
                    target_table=entity_type.value,
                    actor_id=actor_id,
                    reason=reason,
                    metadata={
                        "trigger": trigger.value,
                        "purged": purged,
                        "failures": failures,
                    },
                )

        audit_purged = await self._purge_audit_log(started_at, errors)
        counts_with_audit = dict(counts)
        counts_with_audit[AUDIT_LOG_KEY] = audit_purged
        total = sum(counts.values())

        completed_at = self.clock()
        await self.audit_logger.log_action(
            AuditAction.SWEEP_COMPLETE,
            target_table=SYSTEM_TARGET,
            actor_id=actor_id,
            reason=reason,
            metadata={
                "counts": counts_with_audit,
                "errors": errors,
                "total": total,
                "trigger": trigger.value,
            },
        )

        report = SweepReport(
            trigger=trigger,
            actor_id=actor_id,
            started_at=started_at,
            completed_at=completed_at,
            cutoff=cutoff,
            counts=counts,
            errors=errors,
            audit_entries_purged=audit_purged,
        )
        self.last_sweep_time = completed_at
        self.last_report = report

        logger.info(
            f"Retention sweep complete: {total} records purged, "
            f"{audit_purged} audit entries purged, {len(errors)} tables with errors"
        )
        return report

    async def _sweep_table(
        self,
        entity_type: EntityType,
        cutoff: datetime,
        actor_id: Optional[str],
    ) -> Tuple[int, List[str]]:
        purged = 0
        failures: List[str] = []

        try:
            record_ids = self.lifecycle.purge_eligible_ids(entity_type, cutoff)
        except SQLAlchemyError as e:
            return 0, [f"Could not list purge-eligible records: {e}"]

        for record_id in record_ids:
            try:
                if await self.lifecycle.purge_expired(
                    entity_type, record_id, cutoff, actor_id=actor_id
                ):
                    purged += 1
            except CascadeFailure as e:
                failures.append(str(e))
            except SQLAlchemyError as e:
                failures.append(f"Record with ID {record_id}: {e}")
            # Let the scheduler and request handlers run between records
            await asyncio.sleep(0)

        if purged:
            logger.info(f"Purged {purged} expired {entity_type.value} records")
        return purged, failures

    async def _purge_audit_log(
        self, now: datetime, errors: Dict[str, List[str]]
    ) -> int:
        audit_cutoff = now - timedelta(days=self.config.audit_log_retention_days)
        try:
            return await self.audit_logger.purge_older_than(audit_cutoff)
        except SQLAlchemyError as e:
            logger.warning(f"Audit log purge failed: {e}")
            errors[AUDIT_LOG_KEY] = [str(e)]
            return 0

    async def get_sweep_status(self) -> SweepStatus:
        """Current state of the sweeper and its schedule."""
        last_sweep_time = self.last_sweep_time
        if last_sweep_time is None:
            # Survive restarts: the audit log remembers the last run
            entry = await self.audit_logger.latest(AuditAction.SWEEP_COMPLETE)
            if entry is not None:
                last_sweep_time = entry.created_at

        return SweepStatus(
            is_running=self.is_running,
            last_sweep_time=last_sweep_time,
            next_scheduled_time=self.next_run_time(),
            scheduler_active=self.scheduler_active,
            last_report=self.last_report,
        )

    def next_run_time(self, now: Optional[datetime] = None) -> datetime:
        """
        Next occurrence of the configured sweep time.

        Args:
            now: Naive UTC reference time; defaults to the clock

        Returns:
            Naive UTC datetime strictly after ``now``
        """
        tz = pytz.timezone(self.config.timezone)
        now = now or self.clock()
        local_now = pytz.utc.localize(now).astimezone(tz)
        run_at = time(self.config.sweep_hour, self.config.sweep_minute)

        candidate = tz.localize(datetime.combine(local_now.date(), run_at))
        if candidate <= local_now:
            candidate = tz.localize(
                datetime.combine(local_now.date() + timedelta(days=1), run_at)
            )

        return candidate.astimezone(pytz.utc).replace(tzinfo=None)

    @property
    def scheduler_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> Optional["asyncio.Task[None]"]:
        """
        Start the recurring sweep task on the running event loop.

        Returns:
            The scheduler task, or None when sweeps are disabled
        """
        if not self.config.sweep_enabled:
            logger.info("Scheduled retention sweeps are disabled")
            return None

        if not self.scheduler_active:
            self._task = asyncio.create_task(self._run_scheduler())
            logger.info(
                f"Retention sweep scheduled daily at "
                f"{self.config.sweep_hour:02d}:{self.config.sweep_minute:02d} "
                f"{self.config.timezone} (window {RETENTION_WINDOW_DAYS} days)"
            )
        return self._task

    async def stop(self) -> None:
        """Cancel the recurring sweep task and wait for it to finish."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def run_forever(self) -> None:
        """Run the scheduler until cancelled."""
        task = self.start()
        if task is None:
            return
        try:
            await task
        finally:
            await self.stop()

    async def _run_scheduler(self) -> None:
        next_run: Optional[datetime] = None
        while True:
            now = self.clock()
            # Step from the previous slot so an early wakeup cannot repeat it
            reference = now if next_run is None else max(now, next_run)
            next_run = self.next_run_time(reference)
            delay = max((next_run - now).total_seconds(), 0)
            logger.debug(f"Next retention sweep at {next_run.isoformat()} UTC")
            await asyncio.sleep(delay)

            try:
                await self.run_sweep(SweepTrigger.SCHEDULED)
            except Exception:
                logger.exception("Scheduled retention sweep failed")
