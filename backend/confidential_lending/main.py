"""
Confidential Lending - FastAPI Application

Main entry point for the Confidential Lending backend.

Architecture:
- EncryptedSubmission → ScoreEngine (HandleCodec) → CreditScore
- CreditScore → RiskClassifier → risk tier frozen on a new Loan
- Loan → LoanStateMachine (PENDING → APPROVED/DENIED → ACTIVE → REPAID)
- AuditTrail + CoprocessorStatus record every successful mutation
"""
from contextlib import asynccontextmanager
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .routers import auth_router, scores_router, loans_router, admin_router
from .database import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Confidential Lending",
    description="""
    Confidential Lending - Encrypted Credit Scoring & Loan Lifecycle

    Borrowers submit encrypted financial indicators; the service derives an
    encrypted credit score and a coarse risk tier, and runs the loan
    lifecycle gated by that tier.

    ## Pipeline
    1. **Submission**: encrypted salary / debts / expenses handles
    2. **Score Engine**: deterministic score in [300, 850], re-encrypted
    3. **Risk Classifier**: low / medium / high
    4. **Loan Lifecycle**: apply → approve/deny → active → repaid

    ## Key Principles
    - Handles are opaque and stored verbatim
    - Risk tier is frozen on the loan at application time
    - Transitions are compare-and-swap; racing decisions yield one winner
    - Every successful mutation writes exactly one audit entry
    - Handles are reversibly encoded, not encrypted: no cryptographic confidentiality
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(scores_router)
app.include_router(loans_router)
app.include_router(admin_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Confidential Lending",
        "version": __version__,
        "description": "Encrypted credit scoring and loan lifecycle",
        "docs": "/docs",
        "lifecycle": ["pending", "approved", "denied", "active", "repaid"],
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


# For running with: python -m confidential_lending.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
