# ==============================================
# RecoveryEvaluator
# ==============================================
#
# PURPOSE:
#   Decides what happens to a review whose foreign keys (userId,
#   restaurantId) are not both valid: keep it and keep normalizing, or
#   quarantine it.
#
# WHY THIS CLASS EXISTS:
#   Earlier normalize runs quarantined every review with a missing key,
#   which soft-deleted real user content. A review is only quarantined
#   when nothing else vouches for it.
#
# CLASS: RecoveryEvaluator
# ------------------------
#   Stateless. Only call it when record.has_valid_foreign_keys is False.
#
#   Methods:
#   --------
#   - evaluate(record: ReviewRecord) -> RecoveryDecision
#       1. username AND restaurantName present → RECOVER (identity)
#       2. any photo OR non-empty caption      → RECOVER (content)
#       3. otherwise                           → QUARANTINE
#
# ==============================================

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..normalization.review_record import ReviewRecord


REASON_FALLBACK_IDENTITY = "human-readable fallback present"
REASON_VALID_CONTENT = "valid content present"
REASON_NO_EVIDENCE = "missing foreign key"


class RecoveryOutcome(Enum):
    RECOVER = "recover"
    QUARANTINE = "quarantine"


@dataclass(frozen=True)
class RecoveryDecision:
    """Result of evaluating a review with invalid foreign keys."""
    outcome: RecoveryOutcome
    reason: str

    @property
    def recovered(self) -> bool:
        return self.outcome is RecoveryOutcome.RECOVER

    @property
    def quarantined(self) -> bool:
        return self.outcome is RecoveryOutcome.QUARANTINE


class RecoveryEvaluator:
    """Chooses between heuristic recovery and quarantine."""

    def evaluate(self, record: ReviewRecord) -> RecoveryDecision:
        if record.has_fallback_identity:
            return RecoveryDecision(RecoveryOutcome.RECOVER, REASON_FALLBACK_IDENTITY)
        if record.has_any_photo or record.has_caption:
            return RecoveryDecision(RecoveryOutcome.RECOVER, REASON_VALID_CONTENT)
        return RecoveryDecision(RecoveryOutcome.QUARANTINE, REASON_NO_EVIDENCE)

    def evaluate_if_needed(self, record: ReviewRecord) -> Optional[RecoveryDecision]:
        """Return None for reviews whose foreign keys are already valid."""
        if record.has_valid_foreign_keys:
            return None
        return self.evaluate(record)
