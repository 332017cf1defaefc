# ==============================================
# NORMALIZATION
# ==============================================
#
# Reading a review document and planning its repair.
#
# Modules:
# --------
# - review_record.py  → Typed accessors over a raw review, date parsing,
#                       external place ID predicate
# - update_planner.py → Minimal field-level patch to reach schemaVersion 2
#                       (import it directly; it depends on analysis/)
#
# ==============================================

from .review_record import ReviewRecord, TemporalKind, is_external_place_id, parse_timestamp

__all__ = [
    "ReviewRecord",
    "TemporalKind",
    "is_external_place_id",
    "parse_timestamp"
]
