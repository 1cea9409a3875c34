import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ledger.config import configure_logging, get_settings
from ledger.errors import AuraServiceError, PermissionDeniedError
from ledger.models import (
    AuraStats,
    LeaderboardEntry,
    LeaderboardSort,
    LoginUpdate,
    TransactionHistoryResponse,
)
from ledger.service import LedgerService
from wagers.models import (
    Actor,
    Bet,
    BetDetail,
    BetOutcome,
    BetParticipant,
    BetProof,
    BetResolution,
    BetSide,
    BetStatus,
    BetType,
    CreateBetRequest,
    PlaceStakeRequest,
    ProofMediaType,
    ResolveBetRequest,
    SubmitProofRequest,
)
from wagers.scheduler import start_expiry_scheduler
from wagers.service import WagerService

logger = logging.getLogger(__name__)


class CreateBetBody(BaseModel):
    chat_id: str
    bet_type: BetType
    description: str
    deadline: datetime
    target_user_id: Optional[str] = None


class StakeBody(BaseModel):
    side: BetSide
    amount: int


class ProofBody(BaseModel):
    media_type: ProofMediaType
    media_url: str
    media_key: str
    thumbnail_url: Optional[str] = None
    thumbnail_key: Optional[str] = None
    caption: Optional[str] = None


class ResolveBody(BaseModel):
    outcome: BetOutcome
    notes: Optional[str] = None


def current_user(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    # Set by the authenticating gateway in front of this service.
    return x_user_id


def get_ledger(request: Request) -> LedgerService:
    return request.app.state.ledger


def get_wagers(request: Request) -> WagerService:
    return request.app.state.wagers


def create_app(
    wager_service: Optional[WagerService] = None,
    run_scheduler: bool = False,
) -> FastAPI:
    wager_service = wager_service or WagerService()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = start_expiry_scheduler(wager_service) if run_scheduler else None
        yield
        if scheduler is not None:
            scheduler.shutdown(wait=False)

    app = FastAPI(
        title="Aura Wager API",
        description="Group chat wagers settled in Aura with an auditable ledger",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.wagers = wager_service
    app.state.ledger = wager_service.ledger

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AuraServiceError)
    async def aura_error_handler(request: Request, exc: AuraServiceError):
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "InvalidInputError", "message": "Invalid request", "details": exc.errors()},
        )

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "aura-wagers"}

    @app.post("/aura/login", response_model=LoginUpdate, tags=["Aura"])
    def login_updates(user_id: str = Depends(current_user), ledger: LedgerService = Depends(get_ledger)):
        return ledger.process_login_updates(user_id)

    @app.get("/aura/stats", response_model=AuraStats, tags=["Aura"])
    def aura_stats(user_id: str = Depends(current_user), ledger: LedgerService = Depends(get_ledger)):
        return ledger.get_aura_stats(user_id)

    @app.get("/aura/transactions", response_model=TransactionHistoryResponse, tags=["Aura"])
    def aura_transactions(
        limit: Optional[int] = None,
        user_id: str = Depends(current_user),
        ledger: LedgerService = Depends(get_ledger),
    ):
        return ledger.get_transaction_history(user_id, limit)

    @app.get("/aura/leaderboard", response_model=list[LeaderboardEntry], tags=["Aura"])
    def aura_leaderboard(
        limit: Optional[int] = None,
        sort_by: LeaderboardSort = LeaderboardSort.AURA_BALANCE,
        user_id: str = Depends(current_user),
        ledger: LedgerService = Depends(get_ledger),
    ):
        return ledger.get_leaderboard(limit, sort_by)

    @app.post("/bets", response_model=Bet, status_code=status.HTTP_201_CREATED, tags=["Bets"])
    def create_bet(
        body: CreateBetBody,
        user_id: str = Depends(current_user),
        wagers: WagerService = Depends(get_wagers),
    ):
        return wagers.create_bet(CreateBetRequest(creator_id=user_id, **body.model_dump()))

    @app.post("/bets/auto-expire", tags=["Bets"])
    def auto_expire(user_id: str = Depends(current_user), wagers: WagerService = Depends(get_wagers)):
        return {"expired_count": wagers.auto_expire_bets()}

    @app.get("/bets/chat/{chat_id}", response_model=list[Bet], tags=["Bets"])
    def chat_bets(
        chat_id: str,
        bet_status: Optional[BetStatus] = None,
        limit: int = 50,
        user_id: str = Depends(current_user),
        wagers: WagerService = Depends(get_wagers),
    ):
        if not wagers.membership.is_member(user_id, chat_id):
            raise PermissionDeniedError("You are not in this chat")
        return wagers.get_bets_by_chat(chat_id, bet_status, min(max(limit, 1), 100))

    @app.get("/bets/{bet_id}", response_model=BetDetail, tags=["Bets"])
    def bet_detail(bet_id: UUID, user_id: str = Depends(current_user), wagers: WagerService = Depends(get_wagers)):
        return wagers.get_bet_detail(bet_id, user_id)

    @app.get("/bets/{bet_id}/participants", response_model=list[BetParticipant], tags=["Bets"])
    def bet_participants(bet_id: UUID, user_id: str = Depends(current_user), wagers: WagerService = Depends(get_wagers)):
        return wagers.get_bet_detail(bet_id, user_id).participants

    @app.post("/bets/{bet_id}/stake", response_model=BetParticipant, status_code=status.HTTP_201_CREATED, tags=["Bets"])
    def place_stake(
        bet_id: UUID,
        body: StakeBody,
        user_id: str = Depends(current_user),
        wagers: WagerService = Depends(get_wagers),
    ):
        return wagers.place_bet_stake(bet_id, PlaceStakeRequest(user_id=user_id, **body.model_dump()))

    @app.post("/bets/{bet_id}/proof", response_model=BetProof, status_code=status.HTTP_201_CREATED, tags=["Proofs"])
    def submit_proof(
        bet_id: UUID,
        body: ProofBody,
        user_id: str = Depends(current_user),
        wagers: WagerService = Depends(get_wagers),
    ):
        return wagers.submit_bet_proof(bet_id, SubmitProofRequest(user_id=user_id, **body.model_dump()))

    @app.get("/bets/{bet_id}/proofs", response_model=list[BetProof], tags=["Proofs"])
    def bet_proofs(bet_id: UUID, user_id: str = Depends(current_user), wagers: WagerService = Depends(get_wagers)):
        wagers.get_bet_detail(bet_id, user_id)
        return wagers.get_bet_proofs(bet_id)

    @app.delete("/bets/proofs/{proof_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Proofs"])
    def delete_proof(proof_id: UUID, user_id: str = Depends(current_user), wagers: WagerService = Depends(get_wagers)):
        wagers.delete_bet_proof(proof_id, user_id)

    @app.post("/bets/{bet_id}/resolve", response_model=BetResolution, tags=["Bets"])
    def resolve_bet(
        bet_id: UUID,
        body: ResolveBody,
        user_id: str = Depends(current_user),
        wagers: WagerService = Depends(get_wagers),
    ):
        request = ResolveBetRequest(resolved_by=Actor.user(user_id), outcome=body.outcome, notes=body.notes)
        return wagers.resolve_bet(bet_id, request)

    @app.get("/bets/{bet_id}/resolution", response_model=Optional[BetResolution], tags=["Bets"])
    def bet_resolution(bet_id: UUID, user_id: str = Depends(current_user), wagers: WagerService = Depends(get_wagers)):
        wagers.get_bet_detail(bet_id, user_id)
        return wagers.get_bet_resolution(bet_id)


def build_default_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)
    return create_app(WagerService(LedgerService(settings=settings)), run_scheduler=True)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(build_default_app(), host="0.0.0.0", port=8000)
