"""Matchday Ledger - Data Models"""
from .ledger_models import (
    # Enums
    SkipReason,
    # Inputs
    SurveyReport, MatchInputs,
    # Quorum output
    QuorumResult,
    # Pass result
    SkipEntry, DownstreamFailure, LedgerPassResult,
)

__all__ = [
    "SkipReason",
    "SurveyReport", "MatchInputs",
    "QuorumResult",
    "SkipEntry", "DownstreamFailure", "LedgerPassResult",
]
