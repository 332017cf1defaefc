# ==============================================
# BatchWriter
# ==============================================
#
# PURPOSE:
#   Buffers planned patches keyed by the stored `_id` and commits them as
#   bounded, atomic write-groups.
#
# FLUSH POLICY:
#   - Flush when the buffered group reaches `max_group_size`
#     (hard cap MAX_WRITE_GROUP_SIZE, the store's atomic limit).
#   - Flush on demand with force=True (end of run).
#   - A failed commit raises WriteGroupCommitError and keeps the group
#     buffered; nothing in it is reported as written.
#   - In dry-run mode nothing is buffered or committed: every patch is
#     logged as `[dry-run] <id> -> <patch>` instead.
#
# FUNCTIONS:
# ----------
# - build_update_document(patch) -> dict
#     Translate a planner patch into $set / $unset / $currentDate.
#
# ==============================================

import json
import logging
from datetime import datetime
from typing import Any, Dict, List

from ..config import MAX_WRITE_GROUP_SIZE
from ..errors import StoreError, WriteGroupCommitError
from ..normalization.update_planner import DELETE_FIELD, SERVER_TIMESTAMP


logger = logging.getLogger(__name__)


def build_update_document(patch: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """
    Express a field-level patch as a MongoDB update document.

    Args:
        patch: dotted field path → value, DELETE_FIELD or SERVER_TIMESTAMP

    Returns:
        Update document with only the operators that are needed
    """
    set_fields: Dict[str, Any] = {}
    unset_fields: Dict[str, Any] = {}
    current_date_fields: Dict[str, Any] = {}

    for path, value in patch.items():
        if value is DELETE_FIELD:
            unset_fields[path] = ""
        elif value is SERVER_TIMESTAMP:
            current_date_fields[path] = True
        else:
            set_fields[path] = value

    update: Dict[str, Dict[str, Any]] = {}
    if set_fields:
        update["$set"] = set_fields
    if unset_fields:
        update["$unset"] = unset_fields
    if current_date_fields:
        update["$currentDate"] = current_date_fields
    return update


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def describe_patch(patch: Dict[str, Any]) -> str:
    return json.dumps(patch, default=_json_default, sort_keys=True)


class BatchWriter:
    """Accumulates patches and commits them in atomic write-groups."""

    def __init__(
        self,
        mongo_client,
        collection_name: str,
        max_group_size: int = MAX_WRITE_GROUP_SIZE,
        dry_run: bool = True
    ):
        self._mongo = mongo_client
        self._collection_name = collection_name
        self.max_group_size = max(1, min(max_group_size, MAX_WRITE_GROUP_SIZE))
        self.dry_run = dry_run
        self._pending: Dict[Any, Dict[str, Any]] = {}

        self.groups_committed = 0
        self.records_committed = 0
        self.last_committed_id: Any = None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def pending_ids(self) -> List[Any]:
        return list(self._pending)

    def add(self, document_id: Any, patch: Dict[str, Any]) -> int:
        """
        Queue one patch; flush if the group is full.

        Args:
            document_id: The `_id` exactly as stored (never stringified)
            patch: Planner patch for that document

        Returns:
            Number of records committed by this call (0 if none)
        """
        if not patch:
            return 0

        if self.dry_run:
            logger.info("[dry-run] %s -> %s", document_id, describe_patch(patch))
            return 0

        # Same record twice in one group: later fields win
        self._pending.setdefault(document_id, {}).update(patch)
        if len(self._pending) >= self.max_group_size:
            return self.flush(force=True)
        return 0

    def flush(self, force: bool = False) -> int:
        """
        Commit the buffered group.

        Args:
            force: Commit even if the group is below max_group_size

        Returns:
            Number of records committed
        """
        if self.dry_run or not self._pending:
            return 0
        if not force and len(self._pending) < self.max_group_size:
            return 0

        record_ids = list(self._pending)
        updates = [(record_id, build_update_document(self._pending[record_id])) for record_id in record_ids]
        try:
            self._mongo.commit_write_group(self._collection_name, updates)
        except StoreError as e:
            raise WriteGroupCommitError(
                f"Write-group of {len(record_ids)} records failed, first={record_ids[0]} last={record_ids[-1]}: {e}",
                record_ids
            ) from e

        self._pending.clear()
        self.groups_committed += 1
        self.records_committed += len(record_ids)
        self.last_committed_id = record_ids[-1]
        logger.info(
            "[normalize] committed write-group #%d (%d records, last=%s)",
            self.groups_committed, len(record_ids), self.last_committed_id
        )
        return len(record_ids)
