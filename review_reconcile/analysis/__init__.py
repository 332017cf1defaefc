# ==============================================
# ANALYSIS
# ==============================================
#
# Pure decisions about a single review document. No I/O.
#
# Modules:
# --------
# - classifier.py → Schema generation label (Legacy / Transitional / Structured / Unknown)
# - recovery.py   → Recover vs quarantine for reviews with invalid foreign keys
#
# ==============================================

from .classifier import SchemaClassifier, SchemaLabel
from .recovery import RecoveryDecision, RecoveryEvaluator, RecoveryOutcome

__all__ = [
    "SchemaClassifier",
    "SchemaLabel",
    "RecoveryDecision",
    "RecoveryEvaluator",
    "RecoveryOutcome"
]
