"""
multisig-forge — HTTP API.

FastAPI application providing:
- Contract system generation from a configuration body
- Preflight verdicts for a transaction against a configuration
- Quorum previews over a snapshot of wallet transactions
- Deployment record lookup

Error mapping: ConfigurationError → 422, QuorumViolation → 409,
unknown deployment key → 404.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from multisig_forge.config import settings
from multisig_forge.configuration.schema import (
    MODULE_VERSION,
    NATIVE_TOKEN,
    ContractSystem,
    DeploymentRecord,
    PendingTransaction,
    SystemConfig,
)
from multisig_forge.deployment.collaborators import RecordStore
from multisig_forge.errors import ConfigurationError, QuorumViolation
from multisig_forge.generation.identifiers import eth_to_wei
from multisig_forge.generation.system import generate_contract_system
from multisig_forge.preflight.validator import TransactionValidator
from multisig_forge.quorum.tracker import QuorumTracker

logger = logging.getLogger(__name__)


# ── Pydantic request / response models ────────────────────────


class PreflightRequest(BaseModel):
    config: SystemConfig
    member: str
    to: str
    amount_eth: Decimal
    token: str = NATIVE_TOKEN
    spent_today_eth: Decimal = Decimal("0")


class PreflightResponse(BaseModel):
    approved: bool
    reason: str


class QuorumRequest(BaseModel):
    transactions: list[PendingTransaction]
    owners: list[str] | None = None
    action: Literal["confirm", "revoke", "execute"]
    tx_id: int
    owner: str | None = None


class QuorumResponse(BaseModel):
    changed: bool
    transaction: dict[str, Any]
    executable: list[int] = Field(default_factory=list)


class ApiState:
    """Mutable application state injected at startup."""

    def __init__(self) -> None:
        self.store: RecordStore | None = None
        self.startup_time: datetime = datetime.now(timezone.utc)


state = ApiState()


# ── Application lifecycle ──────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the deployment record store unless one was injected."""
    if state.store is None:
        from multisig_forge.deployment.store import SqlRecordStore

        store = SqlRecordStore(settings.database_url)
        store.initialize()
        state.store = store
        logger.info("API connected to record store at %s", settings.database_url)
    yield
    logger.info("multisig-forge API shut down")


app = FastAPI(
    title="multisig-forge",
    description="Generate, preview and track role-aware multisig contract systems",
    version=MODULE_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(QuorumViolation)
async def quorum_violation_handler(request: Request, exc: QuorumViolation) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "tx_id": exc.tx_id, "reason": exc.reason},
    )


# ── Routes ─────────────────────────────────────────────────────


@app.get("/health")
async def health() -> dict[str, Any]:
    uptime = datetime.now(timezone.utc) - state.startup_time
    return {
        "status": "ok",
        "version": MODULE_VERSION,
        "chain_id": settings.chain_id,
        "uptime_seconds": int(uptime.total_seconds()),
    }


@app.post("/systems", response_model=ContractSystem)
async def create_system(config: SystemConfig) -> ContractSystem:
    """Generate Roles, Policy and IntegratedWalletManager for a configuration."""
    return generate_contract_system(config)


@app.post("/preflight", response_model=PreflightResponse)
async def preflight(body: PreflightRequest) -> PreflightResponse:
    """Verdict the deployed manager would return for this transaction."""
    validator = TransactionValidator.from_config(body.config)
    if body.spent_today_eth:
        validator.policy.record_spend(eth_to_wei(body.spent_today_eth))
    try:
        result = validator.validate_eth(body.member, body.to, body.amount_eth, body.token)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    return PreflightResponse(approved=result.approved, reason=result.reason)


@app.post("/quorum", response_model=QuorumResponse)
async def quorum(body: QuorumRequest) -> QuorumResponse:
    """Apply one confirm / revoke / execute to a transaction snapshot."""
    tracker = QuorumTracker(body.transactions, owners=body.owners)
    if body.action != "execute" and not body.owner:
        raise HTTPException(status_code=422, detail=f"'{body.action}' requires an owner")

    changed = True
    if body.action == "confirm":
        changed = tracker.confirm(body.tx_id, body.owner)
    elif body.action == "revoke":
        tracker.revoke(body.tx_id, body.owner)
    else:
        tracker.mark_executed(body.tx_id)

    return QuorumResponse(
        changed=changed,
        transaction=tracker.summary(tracker.get(body.tx_id)),
        executable=[tx.id for tx in tracker.executable()],
    )


@app.get("/deployments/{key}", response_model=DeploymentRecord)
async def get_deployment(key: str) -> DeploymentRecord:
    if state.store is None:
        raise HTTPException(status_code=503, detail="Record store not initialized")
    record = state.store.load(key)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No deployment recorded under '{key}'")
    return record
