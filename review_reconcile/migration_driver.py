# ==============================================
# MigrationDriver: normalize job orchestrator
# ==============================================
#
# PURPOSE:
#   Ties the scan, the per-record analysis and the writes together into
#   one resumable normalize run over the reviews collection.
#
# HOW THE PIECES CONNECT:
#
#   PaginatedScanner ──► ReviewRecord
#                            │
#                            ▼
#                     SchemaClassifier ──► SchemaLabel
#                            │
#                            ▼  (only when userId/restaurantId invalid)
#                     RecoveryEvaluator ──► RecoveryDecision
#                            │
#                            ▼
#                      UpdatePlanner ──► UpdatePlan (patch may be empty)
#                            │
#                            ▼
#                       BatchWriter ──► commit_write_group (commit mode)
#                                       [dry-run] log line (dry-run mode)
#
# PHASES:
#   SCANNING → CLASSIFYING → (RECOVERING) → PLANNING → BUFFERING
#   → (FLUSHING) → SCANNING ... → DRAINING → DONE
#
# CLASS: MigrationDriver
# ----------------------
#   - run(start_after=None) -> RunState
#       Process every review after `start_after`. Each call owns a fresh
#       RunState. Raises ScanAbortedError on a failed page read or commit,
#       carrying a cursor that never skips an unwritten record.
#
#   - process_document(document, state, writer) -> UpdatePlan
#       Classify, evaluate, plan and buffer a single review.
#
# ACCOUNTING:
#   Every processed review lands in exactly one of changed / skipped /
#   quarantined. `recovered` is tracked alongside, not as a bucket.
#
# ==============================================

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .analysis.classifier import SchemaClassifier
from .analysis.recovery import RecoveryEvaluator
from .config import MAX_PAGE_SIZE, MAX_WRITE_GROUP_SIZE
from .errors import ScanAbortedError, StoreError
from .normalization.review_record import ReviewRecord
from .normalization.update_planner import UpdatePlan, UpdatePlanner
from .storage.batch_writer import BatchWriter, describe_patch
from .storage.scanner import PaginatedScanner


logger = logging.getLogger(__name__)


class RunMode(Enum):
    DRY_RUN = "dry-run"
    COMMIT = "commit"


class DriverPhase(Enum):
    SCANNING = "scanning"
    CLASSIFYING = "classifying"
    RECOVERING = "recovering"
    PLANNING = "planning"
    BUFFERING = "buffering"
    FLUSHING = "flushing"
    DRAINING = "draining"
    DONE = "done"


@dataclass
class RunState:
    """Counters and cursor for a single normalize run."""
    mode: RunMode = RunMode.DRY_RUN
    processed: int = 0
    changed: int = 0
    skipped: int = 0
    quarantined: int = 0
    recovered: int = 0
    last_cursor: Optional[str] = None
    phase: DriverPhase = DriverPhase.SCANNING

    def summary(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "processed": self.processed,
            "changed": self.changed,
            "skipped": self.skipped,
            "quarantined": self.quarantined,
            "recovered": self.recovered,
            "last_cursor": self.last_cursor,
        }


class MigrationDriver:
    """
    Runs the normalize job against one collection.

    The driver is the only component that knows about the run mode; it
    hands `dry_run` to the BatchWriter and nothing else.
    """

    def __init__(
        self,
        mongo_client,
        collection_name: str = "reviews",
        mode: RunMode = RunMode.DRY_RUN,
        batch_size: int = MAX_WRITE_GROUP_SIZE,
        page_size: int = MAX_PAGE_SIZE,
        progress_interval: int = 200,
        classifier: Optional[SchemaClassifier] = None,
        evaluator: Optional[RecoveryEvaluator] = None,
        planner: Optional[UpdatePlanner] = None
    ):
        self._mongo = mongo_client
        self._collection_name = collection_name
        self.mode = mode
        self.batch_size = batch_size
        self.page_size = page_size
        self.progress_interval = max(1, progress_interval)
        self._classifier = classifier or SchemaClassifier()
        self._evaluator = evaluator or RecoveryEvaluator()
        self._planner = planner or UpdatePlanner()

    def run(self, start_after: Any = None) -> RunState:
        """
        Normalize every review after `start_after`.

        Args:
            start_after: Resume cursor (exclusive, the stored `_id` value),
                         None to start from the beginning

        Returns:
            The final RunState

        Raises:
            ScanAbortedError: A page read or write-group commit failed. Its
                              last_cursor is the safe resume point.
        """
        resume_from = None if start_after is None else str(start_after)
        state = RunState(mode=self.mode, last_cursor=resume_from)
        scanner = PaginatedScanner(
            self._mongo,
            self._collection_name,
            page_size=self.page_size,
            start_after=start_after
        )
        writer = BatchWriter(
            self._mongo,
            self._collection_name,
            max_group_size=self.batch_size,
            dry_run=self.mode is RunMode.DRY_RUN
        )

        logger.info(
            "[normalize] start mode=%s startAfter=%s batchSize=%d pageSize=%d",
            self.mode.value, resume_from, writer.max_group_size, scanner.page_size
        )

        try:
            for document in scanner:
                state.last_cursor = scanner.last_cursor
                self.process_document(document, state, writer)
                if state.processed % self.progress_interval == 0:
                    self._log_progress(state)
                state.phase = DriverPhase.SCANNING

            state.phase = DriverPhase.DRAINING
            writer.flush(force=True)
        except StoreError as e:
            state.last_cursor = self._resume_cursor(state, writer, resume_from)
            logger.error("[normalize] aborted, safe resume cursor %s: %s", state.last_cursor, e)
            if writer.pending_count:
                logger.error(
                    "[normalize] %d buffered records were not written: %s",
                    writer.pending_count, ", ".join(str(i) for i in writer.pending_ids)
                )
            logger.error("[normalize] counters at abort: %s", state.summary())
            raise ScanAbortedError(
                f"Normalize run aborted: {e}",
                last_cursor=state.last_cursor,
                state=state
            ) from e

        state.phase = DriverPhase.DONE
        logger.info("[normalize] done %s", state.summary())
        return state

    @staticmethod
    def _resume_cursor(state: RunState, writer: BatchWriter, resume_from: Optional[str]) -> Optional[str]:
        """
        Cursor to restart from after an abort.

        Buffered records sit after the last committed group, so while any
        are pending the resume point is that group's last ID (or where this
        run started). With nothing pending every observed record is settled.
        """
        if not writer.pending_count:
            return state.last_cursor
        if writer.last_committed_id is not None:
            return str(writer.last_committed_id)
        return resume_from

    def process_document(self, document: dict, state: RunState, writer: BatchWriter) -> UpdatePlan:
        """Classify, evaluate, plan and buffer one review."""
        record = ReviewRecord(document)
        state.processed += 1

        state.phase = DriverPhase.CLASSIFYING
        label = self._classifier.classify(record)

        recovery = None
        if not record.has_valid_foreign_keys:
            state.phase = DriverPhase.RECOVERING
            recovery = self._evaluator.evaluate(record)
            if recovery.recovered:
                state.recovered += 1
                logger.info(
                    "[recover] %s missing standard IDs but %s, normalizing",
                    record.record_id, recovery.reason
                )

        state.phase = DriverPhase.PLANNING
        plan = self._planner.plan(record, label, recovery)

        if plan.quarantined:
            state.quarantined += 1
            logger.warning(
                "[quarantine] %s (%s) %s",
                record.record_id, label.value,
                describe_patch(plan.patch) if plan.patch else "already quarantined"
            )
        elif plan.is_empty:
            state.skipped += 1
        else:
            state.changed += 1

        if not plan.is_empty:
            state.phase = DriverPhase.BUFFERING
            if writer.add(record.document_id, plan.patch):
                state.phase = DriverPhase.FLUSHING

        return plan

    def _log_progress(self, state: RunState) -> None:
        logger.info(
            "[normalize] processed=%d changed=%d skipped=%d quarantined=%d",
            state.processed, state.changed, state.skipped, state.quarantined
        )
