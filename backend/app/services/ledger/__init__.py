"""
No-Show Penalty & Recovery Ledger

Turns post-match attendance surveys into durable, idempotent rating
adjustments, and forgives no-show debt through attendance streaks.

- QuorumResolver: confirmed absences from independent witnesses
- PenaltyApplier: one penalty row per (user, match), then rating mutation
- RecoveryTracker: attendance streaks and capped recovery installments
- AdjustmentLedger: append-only rows and derived debt
- RatingStore: idempotent-increment capability over stored counters
- NoShowLedgerProcessor / NoShowScheduler: per-match and batch passes
"""

from .errors import LedgerServiceError, InputUnavailableError
from .quorum_resolver import QuorumResolver
from .adjustment_ledger import AdjustmentLedger, compute_debt
from .rating_store import RatingStore
from .absence_notices import AbsenceNoticeService
from .penalty_applier import PenaltyApplier
from .recovery_tracker import RecoveryTracker, UserLockRegistry
from .match_inputs import MatchInputsRepository
from .processor import NoShowLedgerProcessor, NoShowScheduler, run_no_show_pass

__all__ = [
    'LedgerServiceError',
    'InputUnavailableError',
    'QuorumResolver',
    'AdjustmentLedger',
    'compute_debt',
    'RatingStore',
    'AbsenceNoticeService',
    'PenaltyApplier',
    'RecoveryTracker',
    'UserLockRegistry',
    'MatchInputsRepository',
    'NoShowLedgerProcessor',
    'NoShowScheduler',
    'run_no_show_pass',
]
