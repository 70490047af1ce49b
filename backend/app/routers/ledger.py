"""
No-Show Ledger API Routes

Internal endpoints for the scheduled no-show pass and read-only ledger
queries for reporting collaborators.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Header
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..config import INTERNAL_API_KEY
from ..database import get_db
from ..services.ledger import (
    AbsenceNoticeService,
    AdjustmentLedger,
    LedgerServiceError,
    NoShowLedgerProcessor,
    RecoveryTracker,
    compute_debt,
    run_no_show_pass,
)


router = APIRouter(prefix="/internal/no-show", tags=["no-show ledger"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ProcessMatchesRequest(BaseModel):
    """Batch of matches to run the no-show pass over."""
    match_ids: List[str]


class AbsenceNoticeRequest(BaseModel):
    """Advance notice that a player will miss a match."""
    user_id: str
    match_id: str
    reason: Optional[str] = ""
    found_replacement: bool = False


class AbsenceNoticeResponse(BaseModel):
    id: str
    user_id: str
    match_id: str
    notified_in_time: bool
    found_replacement: bool
    hours_before_match: Optional[float]
    created_at: str


class AdjustmentResponse(BaseModel):
    id: str
    match_id: str
    kind: str
    magnitude: str
    details: Optional[dict]
    created_at: str


class AdjustmentsList(BaseModel):
    user_id: str
    adjustments: List[AdjustmentResponse]
    total: int
    debt: str


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/matches/{match_id}/process", response_model=dict)
async def process_match(
    match_id: str,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Run the no-show pass for one match.

    Safe to call repeatedly: penalties and recoveries are never applied twice.
    """
    processor = NoShowLedgerProcessor(db)
    result = processor.process_match(match_id)

    if result.error:
        raise HTTPException(status_code=503, detail=result.error)

    return result.to_dict()


@router.post("/process", response_model=dict)
async def process_matches(
    request: ProcessMatchesRequest,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Run the no-show pass for a batch of matches.

    Matches whose inputs cannot be read are reported under errors.
    """
    return run_no_show_pass(db, request.match_ids)


# =============================================================================
# LEDGER QUERIES (READ-ONLY)
# =============================================================================

@router.get("/users/{user_id}/debt", response_model=dict)
async def get_user_debt(
    user_id: str,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Outstanding no-show debt and current recovery streak for a user."""
    ledger = AdjustmentLedger(db)
    tracker = RecoveryTracker(db)

    return {
        "user_id": user_id,
        "debt": str(ledger.debt(user_id)),
        "streak": tracker.get_streak(user_id),
    }


@router.get("/users/{user_id}/adjustments", response_model=AdjustmentsList)
async def list_user_adjustments(
    user_id: str,
    match_id: Optional[str] = None,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Ledger rows for a user, optionally narrowed to one match."""
    ledger = AdjustmentLedger(db)
    history = ledger.for_user(user_id)
    rows = ledger.for_user_match(user_id, match_id) if match_id else history

    return AdjustmentsList(
        user_id=user_id,
        adjustments=[
            AdjustmentResponse(
                id=r.id,
                match_id=r.match_id,
                kind=r.kind.value,
                magnitude=str(r.magnitude),
                details=r.details,
                created_at=r.created_at.isoformat(),
            )
            for r in rows
        ],
        total=len(rows),
        debt=str(compute_debt(history)),
    )


# =============================================================================
# ABSENCE NOTICES
# =============================================================================

@router.post("/absence-notices", response_model=AbsenceNoticeResponse)
async def record_absence_notice(
    request: AbsenceNoticeRequest,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Record a player's advance notice of absence.

    Notices given in time, or with a replacement found, excuse the no-show penalty.
    """
    service = AbsenceNoticeService(db)
    try:
        notice = service.record_notice(
            user_id=request.user_id,
            match_id=request.match_id,
            reason=request.reason or "",
            found_replacement=request.found_replacement,
            now=datetime.utcnow(),
        )
    except LedgerServiceError as e:
        raise HTTPException(status_code=404, detail=str(e))

    db.commit()

    return AbsenceNoticeResponse(
        id=notice.id,
        user_id=notice.user_id,
        match_id=notice.match_id,
        notified_in_time=notice.notified_in_time,
        found_replacement=notice.found_replacement,
        hours_before_match=notice.hours_before_match,
        created_at=notice.created_at.isoformat(),
    )
