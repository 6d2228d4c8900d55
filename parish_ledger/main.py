"""
FastAPI application for parish ledger bank reconciliation.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from . import __version__
from .config import get_settings
from .models import AccountType, TransactionKind
from .reconciliation import (
    ReconciliationError,
    ReconciliationInProgressError,
    ReconciliationOrchestrator,
    UnreconcileConfirmationRequired,
    reconciled_statements,
    unreconciled_statements,
)
from .store import DocumentNotFoundError, StoreError, create_store
from .utils import AuditLogger

logger = structlog.get_logger()
settings = get_settings()


def setup_logging():
    """Configure logging to file and console."""
    import logging
    import sys

    log_dir = settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "app.log"

    # Configure standard logging
    logging.basicConfig(
        level=getattr(logging, settings.app_log_level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )

    # Configure structlog to use standard logging
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"]),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()
    logger.info("Starting Parish Ledger Reconciliation API", store=settings.store_backend)
    settings.reports_dir.mkdir(parents=True, exist_ok=True)

    store = create_store(settings)
    audit = AuditLogger(str(uuid4()))
    app.state.orchestrator = ReconciliationOrchestrator(store, settings=settings, audit=audit)

    # Finish anything an earlier run left half-written
    recovered = await app.state.orchestrator.recover_pending()
    if recovered:
        logger.warning("Recovered interrupted writes at startup", intents=recovered)

    yield

    if audit.entries:
        audit.export_to_file()
    logger.info("Shutting down Parish Ledger Reconciliation API")


app = FastAPI(
    title="Parish Ledger",
    description="Bank statement reconciliation for parish income and expenses",
    version=__version__,
    debug=settings.app_debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_orchestrator(request: Request) -> ReconciliationOrchestrator:
    return request.app.state.orchestrator


# Error mapping

@app.exception_handler(DocumentNotFoundError)
async def not_found_handler(request: Request, exc: DocumentNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store failure", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(ReconciliationInProgressError)
async def in_progress_handler(request: Request, exc: ReconciliationInProgressError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(UnreconcileConfirmationRequired)
async def confirmation_handler(request: Request, exc: UnreconcileConfirmationRequired):
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "warning": "unreconcile",
            "documentId": exc.document_id,
            "statementId": exc.statement_id,
        },
    )


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# Request/Response models
class TransactionRef(BaseModel):
    id: str
    type: TransactionKind


class SelectionRequest(BaseModel):
    transactions: List[TransactionRef] = Field(default_factory=list)

    def refs(self) -> List[Dict[str, Any]]:
        return [{"id": t.id, "type": t.type.value} for t in self.transactions]


class EditRequest(BaseModel):
    changes: Dict[str, Any]
    confirm_unreconcile: bool = False


class EditResponse(BaseModel):
    id: str
    unreconciled: bool
    statement_id: Optional[str] = None


class StatsResponse(BaseModel):
    total: int
    reconciled: int
    unreconciled: int
    excluded: int
    percentReconciled: int


# Endpoints

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "environment": settings.app_env,
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/api/statements")
async def list_statements(
    account_type: Optional[AccountType] = None,
    status: Optional[str] = None,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    """List bank statements, newest import first."""
    statements = await orchestrator.load_statements()
    if status == "reconciled":
        statements = reconciled_statements(statements, account_type)
    elif status == "unreconciled":
        statements = unreconciled_statements(statements, account_type)
    elif status is None:
        if account_type is not None:
            statements = [s for s in statements if s.account_type == account_type]
    else:
        raise HTTPException(400, f"Unknown status filter: {status}")
    return [s.to_document() for s in statements]


@app.get("/api/statements/{statement_id}/matches")
async def statement_matches(
    statement_id: str,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    """Candidate transactions for one statement, grouped by match tier."""
    result = await orchestrator.matches_for(statement_id)
    return result.to_dict()


@app.get("/api/statements/{statement_id}/candidates")
async def statement_candidates(
    statement_id: str,
    member: Optional[str] = None,
    category: Optional[str] = None,
    amount: Optional[float] = None,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    """Unreconciled transactions for manual selection."""
    candidates = await orchestrator.candidates_for(
        statement_id, member=member, category=category, amount=amount
    )
    return [t.to_document() for t in candidates]


@app.post("/api/statements/{statement_id}/amount-check")
async def statement_amount_check(
    statement_id: str,
    request: SelectionRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    check = await orchestrator.amount_check(statement_id, request.refs())
    return check.to_dict()


@app.post("/api/statements/{statement_id}/reconcile")
async def reconcile_statement(
    statement_id: str,
    request: SelectionRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    """Link a statement to the selected transactions."""
    statement, check = await orchestrator.reconcile(statement_id, request.refs())
    return {"statement": statement.to_document(), "amountCheck": check.to_dict()}


@app.post("/api/statements/{statement_id}/unreconcile")
async def unreconcile_statement(
    statement_id: str,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    statement = await orchestrator.unreconcile(statement_id)
    return {"statement": statement.to_document()}


@app.patch("/api/statements/{statement_id}", response_model=EditResponse)
async def edit_statement(
    statement_id: str,
    request: EditRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    outcome = await orchestrator.edit_statement(
        statement_id, request.changes, confirm_unreconcile=request.confirm_unreconcile
    )
    return EditResponse(
        id=outcome.document_id,
        unreconciled=outcome.unreconciled,
        statement_id=outcome.statement_id,
    )


@app.delete("/api/statements/{statement_id}")
async def delete_statement(
    statement_id: str,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.delete_statement(statement_id)
    return {"deleted": statement_id}


@app.post("/api/transactions/{kind}/{transaction_id}/unreconcile")
async def unreconcile_transaction(
    kind: TransactionKind,
    transaction_id: str,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    """Remove one transaction from its statement's reconciliation set."""
    statement = await orchestrator.remove_transaction(kind, transaction_id)
    return {"statement": statement.to_document() if statement else None}


@app.patch("/api/transactions/{kind}/{transaction_id}", response_model=EditResponse)
async def edit_transaction(
    kind: TransactionKind,
    transaction_id: str,
    request: EditRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    outcome = await orchestrator.edit_transaction(
        kind, transaction_id, request.changes, confirm_unreconcile=request.confirm_unreconcile
    )
    return EditResponse(
        id=outcome.document_id,
        unreconciled=outcome.unreconciled,
        statement_id=outcome.statement_id,
    )


@app.delete("/api/transactions/{kind}/{transaction_id}")
async def delete_transaction(
    kind: TransactionKind,
    transaction_id: str,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.delete_transaction(kind, transaction_id)
    return {"deleted": transaction_id}


@app.get("/api/reconciliation/stats", response_model=StatsResponse)
async def reconciliation_statistics(
    account_type: Optional[AccountType] = None,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    stats = await orchestrator.stats(account_type)
    return StatsResponse(**stats.to_dict())


@app.get("/api/reconciliation/consistency")
async def reconciliation_consistency(
    repair: bool = False,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    """Report drift between statements and transactions, optionally repairing it."""
    issues = await orchestrator.check_consistency(repair=repair)
    return {
        "consistent": not issues,
        "repaired": bool(issues) and repair,
        "issues": [issue.to_dict() for issue in issues],
    }


@app.post("/api/reconciliation/recover")
async def recover_pending_writes(
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    recovered = await orchestrator.recover_pending()
    return {"recovered": recovered}


@app.get("/api/audit")
async def audit_log(
    action: Optional[str] = None,
    statement_id: Optional[str] = None,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    entries = orchestrator.audit.get_entries(action_filter=action, statement_id=statement_id)
    return {
        "summary": orchestrator.audit.summary(),
        "entries": [e.to_dict() for e in entries],
    }
