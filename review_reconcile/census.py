# ==============================================
# CensusReporter: read-only schema census
# ==============================================
#
# PURPOSE:
#   Samples the reviews collection, labels each document with the
#   SchemaClassifier and reports how the schema generations are spread,
#   so an operator can choose between migrating legacy reviews and
#   purging them.
#
# WHAT THE REPORT CONTAINS:
#   1. Counts per label, createdAt type histogram, missing isDeleted
#   2. Per-label extras: string createdAt count, missing isDeleted count
#   3. Missing userId / restaurantId counts, field presence totals
#   4. Up to N example IDs per label
#   5. Targeted lookups (exact-match / array-membership shapes) with
#      pinned details for every hit
#   6. Query replay: is each targeted review visible to the app's global,
#      per-restaurant and per-user feeds (all ordered by createdAt desc)?
#      A repaired review can still be invisible if createdAt is missing
#      or it falls outside the feed window.
#   7. Recommendation: MIGRATE when legacy (Legacy + Transitional) is at
#      or below the threshold percentage, otherwise PURGE legacy.
#
# NEVER WRITES.
#
# ==============================================

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pymongo import DESCENDING

from .analysis.classifier import SchemaClassifier, SchemaLabel
from .errors import StoreError
from .normalization.review_record import ReviewRecord, TemporalKind
from .storage.scanner import PaginatedScanner


logger = logging.getLogger(__name__)

LEGACY_LABELS = (SchemaLabel.LEGACY, SchemaLabel.TRANSITIONAL)


# ----------------------------------------------
# Targeted lookup shapes
# ----------------------------------------------

@dataclass(frozen=True)
class FieldEquals:
    """Documents whose `field` equals `value`."""
    field: str
    value: Any
    limit: int = 20

    def to_query(self) -> Dict[str, Any]:
        return {self.field: self.value}

    def accepts(self, document: dict) -> bool:
        return True

    def describe(self) -> str:
        return f"{self.field} == {self.value!r}"


@dataclass(frozen=True)
class ArrayContains:
    """
    Documents whose array `field` contains `value`.

    `name_terms` narrows the hits locally to reviews whose dish name
    contains one of the terms (case-insensitive).
    """
    field: str
    value: Any
    limit: int = 100
    name_terms: Tuple[str, ...] = ()

    def to_query(self) -> Dict[str, Any]:
        # MongoDB matches scalar filters against array elements
        return {self.field: self.value}

    def accepts(self, document: dict) -> bool:
        if not self.name_terms:
            return True
        name = str(document.get("dishName") or document.get("dish") or "").lower()
        return any(term.lower() in name for term in self.name_terms)

    def describe(self) -> str:
        return f"{self.field} array-contains {self.value!r}"


def dish_lookups(dish_names: Sequence[str], cuisines: Sequence[str] = ()) -> List[Any]:
    """Lookup shapes for finding reviews of specific dishes."""
    shapes: List[Any] = []
    for name in dish_names:
        shapes.append(FieldEquals("dishName", name))
        shapes.append(FieldEquals("dish", name))
    for cuisine in cuisines:
        shapes.append(ArrayContains("restaurantCuisines", cuisine, name_terms=tuple(dish_names)))
    return shapes


# ----------------------------------------------
# Report data
# ----------------------------------------------

@dataclass
class RecordSummary:
    """Pinned details for one targeted review."""
    record_id: str
    label: SchemaLabel
    created_at: Any
    created_at_kind: TemporalKind
    updated_at_present: bool
    legacy_timestamp_kind: TemporalKind
    is_deleted: Optional[bool]
    user_id: Optional[str]
    restaurant_id: Optional[str]
    dish_name: Optional[str]
    dish_id: Optional[str]
    dish_category: Optional[str]
    media_photos_count: int


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def summarize(document: dict, classifier: SchemaClassifier) -> RecordSummary:
    record = ReviewRecord(document)
    return RecordSummary(
        record_id=record.record_id,
        label=classifier.classify(record),
        created_at=record.created_at,
        created_at_kind=record.created_at_kind,
        updated_at_present=record.has_field("updatedAt"),
        legacy_timestamp_kind=record.legacy_timestamp_kind,
        is_deleted=record.is_deleted if record.has_bool_is_deleted else None,
        user_id=_str_or_none(record.user_id),
        restaurant_id=_str_or_none(record.restaurant_id),
        dish_name=_str_or_none(record.dish_name),
        dish_id=_str_or_none(record.dish_id),
        dish_category=_str_or_none(record.dish_category),
        media_photos_count=record.photo_count,
    )


@dataclass
class QueryCheck:
    query: str
    appears: bool
    reason: Optional[str] = None


@dataclass
class ReplayResult:
    record_id: str
    checks: List[QueryCheck] = field(default_factory=list)


def _label_counter() -> Dict[SchemaLabel, int]:
    return OrderedDict((label, 0) for label in SchemaLabel)


@dataclass
class CensusReport:
    """Everything the census observed. Rendered by format_report()."""
    total: int = 0
    labels: Dict[SchemaLabel, int] = field(default_factory=_label_counter)
    labels_created_at_string: Dict[SchemaLabel, int] = field(default_factory=_label_counter)
    labels_is_deleted_missing: Dict[SchemaLabel, int] = field(default_factory=_label_counter)
    created_at_types: Dict[TemporalKind, int] = field(
        default_factory=lambda: OrderedDict((kind, 0) for kind in TemporalKind)
    )
    is_deleted_missing: int = 0
    missing_user_id: int = 0
    missing_restaurant_id: int = 0
    field_totals: Dict[str, int] = field(
        default_factory=lambda: OrderedDict(
            [("userId", 0), ("restaurantId", 0), ("menuItemId", 0), ("dishId", 0)]
        )
    )
    examples: Dict[SchemaLabel, List[str]] = field(
        default_factory=lambda: OrderedDict((label, []) for label in SchemaLabel)
    )
    lookup_shapes: List[str] = field(default_factory=list)
    targeted: List[RecordSummary] = field(default_factory=list)
    replay: List[ReplayResult] = field(default_factory=list)
    purge_threshold_pct: int = 20

    @property
    def legacy_count(self) -> int:
        return sum(self.labels[label] for label in LEGACY_LABELS)

    @property
    def legacy_pct(self) -> int:
        if self.total == 0:
            return 0
        # Round half up
        return int(self.legacy_count * 100 / self.total + 0.5)

    @property
    def recommendation(self) -> str:
        return "MIGRATE" if self.legacy_pct <= self.purge_threshold_pct else "PURGE legacy"


# ----------------------------------------------
# Reporter
# ----------------------------------------------

class CensusReporter:
    """Samples, classifies and diagnoses reviews without writing."""

    def __init__(
        self,
        mongo_client,
        collection_name: str = "reviews",
        limit: int = 2000,
        examples_per_label: int = 5,
        purge_threshold_pct: int = 20,
        replay_window: int = 1000,
        classifier: Optional[SchemaClassifier] = None
    ):
        self._mongo = mongo_client
        self._collection_name = collection_name
        self.limit = limit
        self.examples_per_label = examples_per_label
        self.purge_threshold_pct = purge_threshold_pct
        self.replay_window = replay_window
        self._classifier = classifier or SchemaClassifier()
        self._feed_cache: Dict[Tuple, List[str]] = {}

    def run(self, lookups: Iterable[Any] = ()) -> CensusReport:
        """
        Sample the collection, then run targeted lookups and query replay.

        Args:
            lookups: FieldEquals / ArrayContains shapes, may be empty

        Returns:
            A filled CensusReport
        """
        report = CensusReport(purge_threshold_pct=self.purge_threshold_pct)
        logger.info("[census] sampling up to %d docs from %s", self.limit, self._collection_name)
        self.sample(report)

        lookups = list(lookups)
        if lookups:
            report.lookup_shapes = [shape.describe() for shape in lookups]
            documents = self.lookup(lookups)
            report.targeted = [summarize(doc, self._classifier) for doc in documents]
            report.replay = self.replay_queries(report.targeted)

        logger.info("[census] done: %d sampled, %d%% legacy", report.total, report.legacy_pct)
        return report

    def sample(self, report: CensusReport) -> CensusReport:
        scanner = PaginatedScanner(self._mongo, self._collection_name, limit=self.limit)
        for document in scanner:
            self.observe(report, document)
        return report

    def observe(self, report: CensusReport, document: dict) -> None:
        """Fold one sampled review into the report counters."""
        record = ReviewRecord(document)
        label = self._classifier.classify(record)
        created_kind = record.created_at_kind

        report.total += 1
        report.labels[label] += 1
        report.created_at_types[created_kind] += 1

        if created_kind is TemporalKind.STRING:
            report.labels_created_at_string[label] += 1
        if not record.has_bool_is_deleted:
            report.is_deleted_missing += 1
            report.labels_is_deleted_missing[label] += 1

        if isinstance(record.user_id, str):
            report.field_totals["userId"] += 1
        else:
            report.missing_user_id += 1
        if isinstance(record.restaurant_id, str):
            report.field_totals["restaurantId"] += 1
        else:
            report.missing_restaurant_id += 1
        if isinstance(record.menu_item_id, str):
            report.field_totals["menuItemId"] += 1
        if isinstance(record.dish_id, str):
            report.field_totals["dishId"] += 1

        examples = report.examples[label]
        if len(examples) < self.examples_per_label:
            examples.append(record.record_id)

    def lookup(self, shapes: Iterable[Any]) -> List[dict]:
        """Fetch documents for each shape directly, de-duplicated by ID, in order."""
        found: "OrderedDict[str, dict]" = OrderedDict()
        for shape in shapes:
            try:
                documents = self._mongo.find(self._collection_name, shape.to_query(), limit=shape.limit)
            except StoreError as e:
                logger.warning("[census] lookup %s failed, skipping: %s", shape.describe(), e)
                continue
            for document in documents:
                if shape.accepts(document):
                    found[str(document["_id"])] = document
        return list(found.values())

    # --- Query replay ---

    def _feed_ids(self, filter_field: Optional[str] = None, filter_value: Any = None) -> List[str]:
        key = (filter_field, filter_value)
        if key not in self._feed_cache:
            # Feeds ordered by createdAt never include reviews without it
            query: Dict[str, Any] = {"createdAt": {"$ne": None}}
            if filter_field is not None:
                query[filter_field] = filter_value
            documents = self._mongo.find(
                self._collection_name,
                query,
                sort=[("createdAt", DESCENDING)],
                limit=self.replay_window
            )
            self._feed_cache[key] = [str(doc["_id"]) for doc in documents]
        return self._feed_cache[key]

    def _check(
        self,
        query_name: str,
        summary: RecordSummary,
        filter_field: Optional[str] = None,
        filter_value: Any = None,
        scope: str = ""
    ) -> QueryCheck:
        try:
            ids = self._feed_ids(filter_field, filter_value)
        except StoreError as e:
            return QueryCheck(query_name, False, f"query failed: {e}")

        if summary.record_id in ids:
            return QueryCheck(query_name, True)
        if summary.created_at_kind is TemporalKind.MISSING:
            return QueryCheck(query_name, False, "missing createdAt")
        return QueryCheck(query_name, False, f"not in top {self.replay_window} by createdAt{scope}")

    def replay_queries(self, summaries: Iterable[RecordSummary]) -> List[ReplayResult]:
        """Check each review against the global, restaurant and user feeds."""
        results = []
        for summary in summaries:
            result = ReplayResult(summary.record_id)

            result.checks.append(self._check("Global feed: orderBy createdAt desc", summary))

            restaurant_query = "Restaurant feed: restaurantId == X, orderBy createdAt desc"
            if not summary.restaurant_id:
                result.checks.append(QueryCheck(restaurant_query, False, "missing restaurantId"))
            else:
                result.checks.append(self._check(
                    restaurant_query, summary, "restaurantId", summary.restaurant_id, " for restaurant"
                ))

            user_query = "User feed: userId == X, orderBy createdAt desc"
            if not summary.user_id:
                result.checks.append(QueryCheck(user_query, False, "missing userId"))
            else:
                result.checks.append(self._check(
                    user_query, summary, "userId", summary.user_id, " for user"
                ))

            results.append(result)
        return results


# ----------------------------------------------
# Rendering
# ----------------------------------------------

def _format_value(value: Any) -> str:
    if value is None:
        return "missing"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return repr(value)


def format_report(report: CensusReport) -> str:
    lines = ["", "=== Reviews Schema Census ===", f"Total sampled: {report.total}"]

    lines.append("")
    lines.append("- Counts per label:")
    for label, count in report.labels.items():
        lines.append(f"  {label.value}: {count}")

    lines.append("")
    lines.append("- createdAt types:")
    for kind, count in report.created_at_types.items():
        lines.append(f"  {kind.value}: {count}")

    lines.append("")
    lines.append(f"- Docs missing isDeleted: {report.is_deleted_missing}")

    lines.append("")
    lines.append("- Per-label extras:")
    for label in SchemaLabel:
        lines.append(
            f"  {label.value}: createdAt(string)={report.labels_created_at_string[label]}, "
            f"isDeleted(missing)={report.labels_is_deleted_missing[label]}"
        )

    lines.append("")
    lines.append("- Missing keys:")
    lines.append(f"  missing userId: {report.missing_user_id}")
    lines.append(f"  missing restaurantId: {report.missing_restaurant_id}")

    lines.append("")
    lines.append("- Field presence totals (sample):")
    for name, count in report.field_totals.items():
        lines.append(f"  have {name}: {count}")

    lines.append("")
    lines.append("- Example IDs per label:")
    for label, ids in report.examples.items():
        lines.append(f"  {label.value}: {', '.join(ids) or '(none)'}")

    if report.lookup_shapes:
        lines.append("")
        lines.append(f"- Targeted lookup ({'; '.join(report.lookup_shapes)}):")
        if not report.targeted:
            lines.append("  None found")
        for s in report.targeted:
            lines.append(
                f"  {s.record_id}: label={s.label.value} "
                f"(structured={s.label is SchemaLabel.STRUCTURED}), createdAt={s.created_at_kind.value}"
            )
            lines.append(f"    createdAt: {_format_value(s.created_at)} (type={s.created_at_kind.value})")
            lines.append(f"    updatedAt present: {s.updated_at_present}")
            lines.append(f"    legacy timestamp type: {s.legacy_timestamp_kind.value}")
            lines.append(f"    isDeleted: {'missing' if s.is_deleted is None else s.is_deleted}")
            lines.append(f"    userId: {s.user_id or 'missing'}")
            lines.append(f"    restaurantId: {s.restaurant_id or 'missing'}")
            lines.append(f"    dishName: {s.dish_name or 'missing'}")
            lines.append(f"    dishId: {s.dish_id or 'missing'}")
            lines.append(f"    dishCategory: {s.dish_category or 'missing'}")
            lines.append(f"    media.photos count: {s.media_photos_count}")

    if report.replay:
        lines.append("")
        lines.append("- Replay against app query shapes:")
        for r in report.replay:
            lines.append(f"  For doc {r.record_id}:")
            for c in r.checks:
                status = "APPEARS" if c.appears else "MISSING"
                suffix = f" ({c.reason})" if c.reason else ""
                lines.append(f"    {c.query}: {status}{suffix}")

    lines.append("")
    lines.append(
        f"Recommendation: {report.recommendation} "
        f"({report.legacy_pct}% legacy = Legacy+Transitional, threshold {report.purge_threshold_pct}%)"
    )
    return "\n".join(lines)
