"""
Oraculum API - AI Oracle for Prediction Market Resolution

Main API endpoints:
- /oracle/resolve - Multi-model consensus for a market question
- /cron/oracle-check - Scheduler trigger for one resolution tick
- /disputes/* - Stake-weighted dispute arbitration
- /resolutions/{market_id} - Audit history of consensus rounds

SECURITY:
- Oracle calls authenticated by shared secret or HMAC signature
- Cron trigger authenticated by bearer token
- Admin key for opening, finalizing and force-finalizing disputes
"""

import asyncio
import hmac
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from auth import authenticate_oracle_request, verify_bearer_token
from consensus.models import Outcome
from errors import AuthenticationError, ChainError, DisputeError, NoQuorumError
from scheduler import get_scheduler, setup_scheduler, shutdown_scheduler
from services import OracleServices, get_services

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Oraculum-API")

ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    os.getenv("FRONTEND_URL", "http://localhost:3000"),
]

if os.getenv("CORS_ALLOW_ALL", "").lower() == "true":
    ALLOWED_ORIGINS = ["*"]

MAX_QUESTION_LENGTH = 2000


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ==================== SECURITY HELPERS ====================

def verify_admin_key(
    x_admin_key: str = Header(None),
    services: OracleServices = Depends(get_services),
) -> bool:
    """Verify admin API key for protected endpoints."""
    expected = services.config.auth.admin_api_key
    if not expected or not x_admin_key or not hmac.compare_digest(x_admin_key.encode(), expected.encode()):
        raise HTTPException(
            status_code=403,
            detail="Invalid or missing admin API key"
        )
    return True


def _dispute_error(e: DisputeError) -> HTTPException:
    return HTTPException(status_code=404 if e.not_found else 400, detail=str(e))


def _parse_outcome(value: str) -> Outcome:
    outcome = Outcome.from_label(value)
    if outcome is None:
        raise ValueError("Outcome must be YES, NO or INVALID")
    return outcome


# ==================== LIFESPAN (Startup/Shutdown) ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info("Starting Oraculum API...")
    services = get_services()

    if services.config.scheduler.enabled:
        await setup_scheduler(services, services.config.scheduler)
        logger.info("Background scheduler started")

    yield

    logger.info("Shutting down Oraculum API...")
    await shutdown_scheduler()


# ==================== FASTAPI APP ====================

app = FastAPI(
    title="Oraculum API",
    description="AI oracle for prediction market resolution",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Content-Type", "Authorization", "X-Admin-Key",
        "X-Oracle-Secret", "X-Oracle-Signature", "X-Oracle-Timestamp",
    ],
)


# ==================== REQUEST MODELS ====================

class ResolveMarketRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    market_description: str = Field(..., alias="marketDescription", min_length=3,
                                     max_length=MAX_QUESTION_LENGTH)
    price_context: Optional[str] = Field(None, alias="priceContext")
    market_id: Optional[int] = Field(None, alias="marketId", ge=0)

    @field_validator("market_description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Market description cannot be empty")
        return v.strip()


class OpenDisputeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    market_id: int = Field(..., alias="marketId", ge=0)
    original_outcome: str = Field(..., alias="originalOutcome")
    challenger: str = Field(..., min_length=1, max_length=100)
    window_hours: Optional[float] = Field(None, alias="windowHours", gt=0)

    @field_validator("original_outcome")
    @classmethod
    def validate_outcome(cls, v: str) -> str:
        return _parse_outcome(v).name


class DisputeVoteRequest(BaseModel):
    voter: str = Field(..., min_length=1, max_length=100)
    choice: str

    @field_validator("choice")
    @classmethod
    def validate_choice(cls, v: str) -> str:
        return _parse_outcome(v).name


class ForceFinalizeRequest(BaseModel):
    outcome: str
    reason: str = Field(..., min_length=10)

    @field_validator("outcome")
    @classmethod
    def validate_outcome(cls, v: str) -> str:
        return _parse_outcome(v).name


# ==================== HEALTH CHECK ====================

@app.get("/")
def read_root():
    return {
        "status": "online",
        "service": "Oraculum API",
        "version": "1.0.0",
        "features": [
            "Multi-model consensus resolution",
            "Direct and relayed on-chain submission",
            "Stake-weighted dispute arbitration",
        ]
    }


@app.get("/health")
def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "timestamp": _timestamp()}


@app.get("/health/detailed")
def detailed_health_check(services: OracleServices = Depends(get_services)):
    """
    Detailed health check with component status.
    Use this for monitoring and debugging.
    """
    components = {}
    overall_healthy = True

    providers = services.engine.get_provider_status()
    quorum = services.config.consensus.min_quorum
    components["providers"] = {
        "status": "healthy" if len(providers) >= quorum else "degraded",
        "min_quorum": quorum,
        "providers": providers,
    }
    if len(providers) < quorum:
        overall_healthy = False

    components["submission"] = {
        "mode": services.submitter.mode.value,
        "relay": services.relay.check_configuration(),
    }
    components["watcher"] = services.watcher.get_status()

    try:
        components["history"] = {"status": "healthy", **services.history.get_stats()}
    except Exception as e:
        components["history"] = {"status": "error", "error": str(e)}
        overall_healthy = False

    components["scheduler"] = get_scheduler().status()

    return {
        "status": "healthy" if overall_healthy else "degraded",
        "timestamp": _timestamp(),
        "components": components
    }


# ==================== ORACLE ENDPOINTS ====================

@app.post("/oracle/resolve")
async def resolve_market(
    request: Request,
    x_oracle_secret: Optional[str] = Header(None),
    x_oracle_signature: Optional[str] = Header(None),
    x_oracle_timestamp: Optional[str] = Header(None),
    services: OracleServices = Depends(get_services),
):
    """
    Run a consensus round for a market question.

    Returns 200 with the accepted outcome, or 202 with decided=false when the
    providers could not reach quorum or the agreement threshold, or the round
    ran past its timeout.
    """
    body = await request.body()
    try:
        authenticate_oracle_request(
            services.config.auth,
            body,
            secret_header=x_oracle_secret,
            signature=x_oracle_signature,
            timestamp=x_oracle_timestamp,
        )
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))

    try:
        payload = ResolveMarketRequest.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False, include_input=False)
        )

    round_timeout = services.config.consensus.round_timeout
    try:
        result = await asyncio.wait_for(
            services.engine.get_consensus(
                payload.market_description,
                market_id=payload.market_id,
                price_context=payload.price_context,
            ),
            timeout=round_timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Oracle resolve exceeded {round_timeout}s, undecided")
        return JSONResponse(
            status_code=202,
            content={
                "decided": False,
                "reason": f"Consensus round exceeded {round_timeout}s",
                "consensusCount": 0,
                "totalModels": 0,
                "votes": [],
                "timestamp": _timestamp(),
            },
        )
    except NoQuorumError as e:
        logger.info(f"Oracle resolve undecided: {e}")
        return JSONResponse(
            status_code=202,
            content={"decided": False, **e.to_dict(), "timestamp": _timestamp()},
        )
    except Exception as e:
        logger.error(f"Oracle resolve failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return {"decided": True, **result.to_dict(), "timestamp": _timestamp()}


@app.get("/cron/oracle-check")
async def cron_oracle_check(
    authorization: Optional[str] = Header(None),
    services: OracleServices = Depends(get_services),
):
    """
    Run one resolution tick over every market in Resolving.
    Requires Authorization: Bearer <CRON_SECRET>.
    """
    try:
        verify_bearer_token(authorization, services.config.auth.cron_secret)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))

    try:
        result = await services.watcher.check_pending_resolutions()
    except Exception as e:
        logger.error(f"Cron oracle check failed: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "timestamp": _timestamp(), "error": str(e)},
        )

    return {
        "success": True,
        "timestamp": _timestamp(),
        "result": {
            "checked": result.checked,
            "processed": result.processed,
            "errors": result.errors,
        },
        "message": f"Checked {result.checked} markets, processed {result.processed}",
    }


@app.get("/resolutions/{market_id}")
def get_resolution_history(
    market_id: int,
    limit: int = 50,
    services: OracleServices = Depends(get_services),
):
    """Audit history of consensus rounds for a market, newest first."""
    records = services.history.get_by_market(market_id, limit=limit)
    return {
        "market_id": market_id,
        "count": len(records),
        "rounds": [r.to_dict() for r in records],
    }


# ==================== DISPUTE ENDPOINTS ====================

@app.post("/disputes")
def open_dispute(
    request: OpenDisputeRequest,
    admin_verified: bool = Depends(verify_admin_key),
    services: OracleServices = Depends(get_services),
):
    """Open a dispute on a market's resolution. Requires X-Admin-Key header."""
    try:
        dispute = services.disputes.open_dispute(
            market_id=request.market_id,
            original_outcome=Outcome[request.original_outcome],
            challenger=request.challenger,
            window_hours=request.window_hours,
        )
    except DisputeError as e:
        raise _dispute_error(e)

    return {"success": True, "dispute": dispute.to_dict()}


@app.post("/disputes/{market_id}/votes")
def cast_dispute_vote(
    market_id: int,
    request: DisputeVoteRequest,
    services: OracleServices = Depends(get_services),
):
    """Cast a stake-weighted vote while the dispute window is open."""
    try:
        vote = services.disputes.cast_vote(market_id, request.voter, Outcome[request.choice])
    except DisputeError as e:
        raise _dispute_error(e)

    return {"success": True, "vote": vote.to_dict()}


@app.get("/disputes/{market_id}")
def get_dispute(market_id: int, services: OracleServices = Depends(get_services)):
    try:
        dispute = services.disputes.get_dispute(market_id)
    except DisputeError as e:
        raise _dispute_error(e)

    votes = services.disputes.get_votes(market_id)
    return {
        "dispute": dispute.to_dict(),
        "voter_count": len(votes),
        "votes": [v.to_dict() for v in votes],
    }


@app.get("/disputes/{market_id}/tally")
def get_dispute_tally(market_id: int, services: OracleServices = Depends(get_services)):
    """Weighted tally. Only available once the voting window has closed."""
    try:
        tally = services.disputes.tally_dispute_votes(market_id)
    except DisputeError as e:
        raise _dispute_error(e)

    return {"market_id": market_id, "tally": tally.to_dict()}


@app.post("/disputes/{market_id}/finalize")
def finalize_dispute(
    market_id: int,
    admin_verified: bool = Depends(verify_admin_key),
    services: OracleServices = Depends(get_services),
):
    """Tally and settle a dispute. Requires X-Admin-Key header."""
    try:
        settlement = services.disputes.finalize_dispute(market_id)
    except DisputeError as e:
        raise _dispute_error(e)

    return {"success": True, "settlement": settlement.to_dict()}


@app.post("/disputes/{market_id}/force-finalize")
def force_finalize_dispute(
    market_id: int,
    request: ForceFinalizeRequest,
    admin_verified: bool = Depends(verify_admin_key),
    services: OracleServices = Depends(get_services),
):
    """
    Governance decision for an escalated dispute.
    Requires X-Admin-Key header.
    """
    try:
        settlement = services.disputes.force_finalize(
            market_id, Outcome[request.outcome], request.reason
        )
    except DisputeError as e:
        raise _dispute_error(e)

    return {"success": True, "settlement": settlement.to_dict()}


# ==================== STAKE ENDPOINTS ====================

@app.get("/stakes/{voter}")
def get_stake(voter: str, services: OracleServices = Depends(get_services)):
    return services.disputes.ledger.get_position(voter).to_dict()


@app.post("/stakes/{voter}/sync")
async def sync_stake(
    voter: str,
    admin_verified: bool = Depends(verify_admin_key),
    services: OracleServices = Depends(get_services),
):
    """Refresh a staker's balance from the ReputationStaking contract."""
    try:
        position = await services.disputes.ledger.sync_from_chain(voter, services.chain)
    except ChainError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {"success": True, "stake": position.to_dict()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
