# ==============================================
# UpdatePlanner
# ==============================================
#
# PURPOSE:
#   Computes the smallest field-level patch that brings one review into
#   canonical (schemaVersion 2) shape. Pure: no I/O, no clock reads. The
#   store resolves SERVER_TIMESTAMP and DELETE_FIELD at write time.
#
# PATCH RULES (each applies independently):
# -----------------------------------------
#   quarantine   → isDeleted=True, normalizeError="missing foreign key",
#                  schemaVersion=2, then stop
#   recovery     → unset normalizeError, isDeleted=False (only if needed)
#   createdAt    → string that parses  → timestamp
#                  string that doesn't → normalizeError="invalid createdAt string"
#                  missing/null        → copy from legacy `timestamp` if it parses
#   isDeleted    → False when not a boolean
#   dishName     → copy from `dish` when empty
#   media.photos → from legacy `images` (or []) when not a list
#   schemaVersion→ 2
#   updatedAt    → server time, on every non-empty patch
#
#   Every rule compares against the current value, so a second pass over
#   an already-repaired review yields an empty patch.
#
# ==============================================

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..analysis.classifier import SchemaLabel
from ..analysis.recovery import RecoveryDecision
from .review_record import (
    CANONICAL_SCHEMA_VERSION,
    ReviewRecord,
    TemporalKind,
    non_empty_str,
    parse_timestamp,
)


QUARANTINE_ERROR = "missing foreign key"
INVALID_CREATED_AT_ERROR = "invalid createdAt string"


class _Sentinel:
    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name


# Remove the field from the document
DELETE_FIELD = _Sentinel("DELETE_FIELD")
# Set the field to the store's clock at commit time
SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")


@dataclass
class UpdatePlan:
    """Planned patch for a single review, keyed by dotted field path."""
    record_id: Optional[str]
    label: SchemaLabel
    patch: Dict[str, Any] = field(default_factory=dict)
    recovery: Optional[RecoveryDecision] = None

    @property
    def is_empty(self) -> bool:
        return not self.patch

    @property
    def quarantined(self) -> bool:
        return self.recovery is not None and self.recovery.quarantined

    @property
    def recovered(self) -> bool:
        return self.recovery is not None and self.recovery.recovered


def clean_photo_list(images: Any) -> List[str]:
    """Stringify legacy image entries, dropping null and blank ones."""
    if not isinstance(images, list):
        return []
    photos = []
    for item in images:
        if item is None:
            continue
        text = str(item)
        if text.strip():
            photos.append(text)
    return photos


class UpdatePlanner:
    """Builds UpdatePlans from a review, its label and its recovery decision."""

    def plan(
        self,
        record: ReviewRecord,
        label: SchemaLabel,
        recovery: Optional[RecoveryDecision] = None
    ) -> UpdatePlan:
        """
        Plan the patch for one review.

        Args:
            record: The review to repair
            label: Its schema generation (informational, does not change rules)
            recovery: Decision from RecoveryEvaluator, or None when the
                      foreign keys are valid

        Returns:
            UpdatePlan whose patch may be empty
        """
        patch: Dict[str, Any] = {}

        if recovery is not None and recovery.quarantined:
            self._plan_quarantine(record, patch)
        else:
            if recovery is not None and recovery.recovered:
                self._plan_recovery(record, patch)
            self._plan_created_at(record, patch)
            self._plan_is_deleted(record, patch)
            self._plan_dish_name(record, patch)
            self._plan_media_photos(record, patch)
            self._plan_schema_version(record, patch)

        if patch:
            patch["updatedAt"] = SERVER_TIMESTAMP

        return UpdatePlan(
            record_id=record.record_id,
            label=label,
            patch=patch,
            recovery=recovery
        )

    def _plan_quarantine(self, record: ReviewRecord, patch: Dict[str, Any]) -> None:
        if record.is_deleted is not True:
            patch["isDeleted"] = True
        if record.normalize_error != QUARANTINE_ERROR:
            patch["normalizeError"] = QUARANTINE_ERROR
        self._plan_schema_version(record, patch)

    def _plan_recovery(self, record: ReviewRecord, patch: Dict[str, Any]) -> None:
        if record.normalize_error:
            patch["normalizeError"] = DELETE_FIELD
        if record.is_deleted is True:
            patch["isDeleted"] = False

    def _plan_created_at(self, record: ReviewRecord, patch: Dict[str, Any]) -> None:
        kind = record.created_at_kind

        if kind is TemporalKind.STRING:
            parsed = parse_timestamp(record.created_at)
            if parsed is not None:
                patch["createdAt"] = parsed
            elif record.normalize_error != INVALID_CREATED_AT_ERROR:
                patch["normalizeError"] = INVALID_CREATED_AT_ERROR
            else:
                # Already flagged; cancel a pending recovery unset
                patch.pop("normalizeError", None)
        elif kind is TemporalKind.MISSING:
            parsed = parse_timestamp(record.legacy_timestamp)
            if parsed is not None:
                patch["createdAt"] = parsed

    def _plan_is_deleted(self, record: ReviewRecord, patch: Dict[str, Any]) -> None:
        if "isDeleted" not in patch and not record.has_bool_is_deleted:
            patch["isDeleted"] = False

    def _plan_dish_name(self, record: ReviewRecord, patch: Dict[str, Any]) -> None:
        if not record.has_dish_name and non_empty_str(record.dish):
            patch["dishName"] = record.dish

    def _plan_media_photos(self, record: ReviewRecord, patch: Dict[str, Any]) -> None:
        if record.has_media_photos_list:
            return
        photos = clean_photo_list(record.images)
        media = record.media
        if media is None or isinstance(media, Mapping):
            patch["media.photos"] = photos
        else:
            # A scalar `media` can't hold a nested path; replace it
            patch["media"] = {"photos": photos}

    def _plan_schema_version(self, record: ReviewRecord, patch: Dict[str, Any]) -> None:
        if record.schema_version != CANONICAL_SCHEMA_VERSION:
            patch["schemaVersion"] = CANONICAL_SCHEMA_VERSION
