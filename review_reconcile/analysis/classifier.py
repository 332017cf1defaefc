# ==============================================
# SchemaClassifier
# ==============================================
#
# PURPOSE:
#   Assigns each raw review to the schema generation it was written in,
#   using field presence and type heuristics only. No I/O.
#
# WHY THIS CLASS EXISTS:
#   Three incompatible shapes accumulated in one collection. The census
#   needs a label per document to size the problem, and the normalize job
#   logs it next to every planned patch.
#
# CLASS: SchemaClassifier
# -----------------------
#   Stateless: record in, label out.
#
#   Methods:
#   --------
#   - classify(record) -> SchemaLabel
#       Applies the rules top-down, first match wins:
#
#       RULE 1: LEGACY
#         (legacy `timestamp` is a timestamp or string, OR createdAt is
#          a string) AND isDeleted is not a boolean
#
#       RULE 2: TRANSITIONAL
#         dishName is a non-empty string AND createdAt is a string
#
#       RULE 3: STRUCTURED
#         createdAt is a timestamp AND isDeleted is a boolean AND
#         (media.photos is a list OR any nested object field exists)
#
#       RULE 4: UNKNOWN
#         Everything else.
#
#   The rules overlap. Order resolves the overlap toward the less-migrated
#   label, so a document is never treated as more repaired than it is.
#
# ==============================================

from enum import Enum
from typing import Any, Callable, List, Mapping, Tuple, Union

from ..normalization.review_record import ReviewRecord, TemporalKind, non_empty_str


class SchemaLabel(Enum):
    """Schema generation of a review document."""
    LEGACY = "Legacy"
    TRANSITIONAL = "Transitional"
    STRUCTURED = "Structured"
    UNKNOWN = "Unknown"


def _looks_legacy(record: ReviewRecord) -> bool:
    has_legacy_time = record.legacy_timestamp_kind in (TemporalKind.TIMESTAMP, TemporalKind.STRING)
    string_created_at = record.created_at_kind is TemporalKind.STRING
    return (has_legacy_time or string_created_at) and not record.has_bool_is_deleted


def _looks_transitional(record: ReviewRecord) -> bool:
    return non_empty_str(record.dish_name) and record.created_at_kind is TemporalKind.STRING


def _looks_structured(record: ReviewRecord) -> bool:
    return (
        record.created_at_kind is TemporalKind.TIMESTAMP
        and record.has_bool_is_deleted
        and (record.has_media_photos_list or record.has_nested_objects)
    )


RecordLike = Union[ReviewRecord, Mapping[str, Any]]


class SchemaClassifier:
    """Ordered predicate → label table, evaluated top-down."""

    RULES: List[Tuple[SchemaLabel, Callable[[ReviewRecord], bool]]] = [
        (SchemaLabel.LEGACY, _looks_legacy),
        (SchemaLabel.TRANSITIONAL, _looks_transitional),
        (SchemaLabel.STRUCTURED, _looks_structured),
    ]

    def classify(self, record: RecordLike) -> SchemaLabel:
        """
        Classify one review.

        Args:
            record: A ReviewRecord or the raw document mapping

        Returns:
            The first matching SchemaLabel, or SchemaLabel.UNKNOWN
        """
        if not isinstance(record, ReviewRecord):
            record = ReviewRecord(record)
        for label, predicate in self.RULES:
            if predicate(record):
                return label
        return SchemaLabel.UNKNOWN
