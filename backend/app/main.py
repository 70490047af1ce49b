"""
Matchday Ledger - FastAPI Application

Main entry point for the no-show penalty & recovery ledger backend.

Architecture:
- Surveys + Roster → QuorumResolver → confirmed absences
- Confirmed absences → PenaltyApplier → penalty rows + rating mutation
- Attendance → RecoveryTracker → streaks + recovery rows + rating mutation
- Ledger rows → Debt (derived, never stored)
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI

from .routers import ledger_router
from .database import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Matchday Ledger",
    description="""
    Matchday Ledger - No-Show Penalty & Recovery System

    Turns post-match attendance surveys into idempotent rating adjustments
    and forgives no-show debt through attendance streaks.

    ## Pipeline
    1. **Quorum**: at least 2 independent voters confirm an absence
    2. **Penalty**: one penalty row per (user, match), then rating mutation
    3. **Recovery**: every 3rd attended match while in debt returns part of it
    4. **Debt**: penalties minus recoveries, derived from the ledger

    ## Key Principles
    - The ledger is append-only and authoritative
    - Re-running a pass never double-applies an adjustment
    - Guests are never written to the ledger
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Include routers
app.include_router(ledger_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Matchday Ledger",
        "version": "1.0.0",
        "description": "No-Show Penalty & Recovery Ledger",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
