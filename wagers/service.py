import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID, uuid4

from pydantic import AnyUrl, TypeAdapter, ValidationError

from ledger.errors import (
    BankruptError,
    BetNotFoundError,
    InsufficientAuraError,
    InvalidInputError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    ProofNotFoundError,
    UserNotFoundError,
)
from ledger.models import TransactionType
from ledger.service import LedgerService

from .membership import ChatMembership, InMemoryChatMembership
from .models import (
    SYSTEM_ACTOR,
    Bet,
    BetDetail,
    BetOutcome,
    BetParticipant,
    BetProof,
    BetResolution,
    BetSide,
    BetStatus,
    BetTotals,
    BetType,
    CreateBetRequest,
    PlaceStakeRequest,
    ResolveBetRequest,
    SubmitProofRequest,
    transition,
)
from .payout import PayoutKind, calculate_payouts

logger = logging.getLogger(__name__)

_URL = TypeAdapter(AnyUrl)

AUTO_EXPIRE_NOTE = "Auto-expired by system (deadline passed)"

# (creator counter, target counter) per outcome
OUTCOME_STATS = {
    BetOutcome.YES: ("bets_completed", "bets_completed"),
    BetOutcome.NO: ("bets_failed", "bets_failed"),
    BetOutcome.EXPIRED: ("bets_failed", "bets_failed"),
    BetOutcome.DUCKED: (None, "callouts_ignored"),
}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _excerpt(text: str, length: int = 50) -> str:
    return text if len(text) <= length else f"{text[:length]}..."


def _validate_url(value: str, label: str) -> None:
    try:
        _URL.validate_python(value)
    except ValidationError:
        raise InvalidInputError(f"Invalid {label} format")


class WagerService:
    """State machine for bets: creation, escrowed staking, proofs and settlement.

    The only component that writes bets, stakes, proofs and resolutions, and the
    only caller of the ledger's debit/credit primitives for wager activity.
    """

    def __init__(
        self,
        ledger: Optional[LedgerService] = None,
        membership: Optional[ChatMembership] = None,
    ):
        self.ledger = ledger or LedgerService()
        self.membership = membership or InMemoryChatMembership()

    @property
    def storage(self):
        return self.ledger.storage

    @property
    def settings(self):
        return self.ledger.settings

    def now(self) -> datetime:
        return self.ledger.clock()

    # Creation

    def create_bet(self, request: CreateBetRequest) -> Bet:
        description = request.description.strip()
        max_length = self.settings.max_description_length
        if not description:
            raise InvalidInputError("Description cannot be empty")
        if len(description) > max_length:
            raise InvalidInputError(f"Description too long (max {max_length} characters)")

        now = self.now()
        deadline = _as_utc(request.deadline)
        min_hours = self.settings.min_deadline_hours
        if deadline <= now + timedelta(hours=min_hours):
            raise InvalidInputError(
                f"Deadline must be in the future (at least {min_hours} hour from now)"
            )

        creator_id = request.creator_id
        target_id = request.target_user_id if request.bet_type != BetType.SELF else None
        cost = self.settings.bet_creation_cost

        with self.storage.lock(user_ids=[creator_id, target_id]):
            if not self.membership.is_member(creator_id, request.chat_id):
                raise PermissionDeniedError("You must be a member of this chat to create bets")

            creator = self.ledger.get_wallet(creator_id)
            if creator.aura_balance <= 0:
                raise BankruptError(cost, creator.aura_balance)
            if creator.aura_balance < cost:
                raise InsufficientAuraError(cost, creator.aura_balance)

            if request.bet_type != BetType.SELF:
                kind = request.bet_type.value
                if not target_id:
                    raise InvalidInputError(f"{kind} bet requires a target user")
                if target_id == creator_id:
                    raise InvalidInputError("Cannot target yourself in a callout or dare")
                if target_id not in self.storage.users:
                    raise UserNotFoundError("Target user not found")
                if not self.membership.is_member(target_id, request.chat_id):
                    raise InvalidInputError("Target user must be in this chat")

            bet_id = uuid4()
            self.ledger.debit(
                creator_id,
                cost,
                TransactionType.BET_CREATION,
                f"Created {request.bet_type.value} bet: {_excerpt(description)}",
                bet_id,
            )
            self.ledger.increment_stats(creator_id, bets_created=1)
            if request.bet_type == BetType.CALLOUT:
                self.ledger.increment_stats(target_id, callouts_received=1)

            bet_data = {
                "id": bet_id,
                "chat_id": request.chat_id,
                "creator_id": creator_id,
                "bet_type": request.bet_type,
                "description": description,
                "deadline": deadline,
                "status": BetStatus.ACTIVE,
                "target_user_id": target_id,
                "creation_cost": cost,
                "created_at": now,
                "updated_at": now,
            }
            self.storage.insert(self.storage.bets, bet_id, bet_data)

        logger.info(
            "Bet %s created in chat %s by %s (%s)",
            bet_id, request.chat_id, creator_id, request.bet_type.value,
        )
        return Bet(**bet_data)

    # Staking

    def place_bet_stake(self, bet_id: UUID, request: PlaceStakeRequest) -> BetParticipant:
        user_id = request.user_id
        amount = request.amount

        with self.storage.lock(bet_ids=[bet_id], user_ids=[user_id]):
            bet = self.get_bet(bet_id)
            if bet.status != BetStatus.ACTIVE:
                raise InvalidStateTransitionError(f"Cannot stake on {bet.status.value} bet")
            now = self.now()
            if not bet.can_stake(now):
                raise InvalidStateTransitionError("Bet deadline has passed")

            wallet = self.ledger.get_wallet(user_id)
            if wallet.aura_balance <= 0:
                raise BankruptError(amount, wallet.aura_balance)
            if amount < self.settings.min_stake:
                raise InvalidInputError(f"Minimum stake is {self.settings.min_stake} Aura")
            if wallet.aura_balance < amount:
                raise InsufficientAuraError(amount, wallet.aura_balance)

            if not self.membership.is_member(user_id, bet.chat_id):
                raise PermissionDeniedError("You must be in this chat to bet")
            if (bet_id, user_id) in self.storage.participant_index:
                raise InvalidStateTransitionError("You have already staked on this bet")

            participant_id = uuid4()
            participant_data = {
                "id": participant_id,
                "bet_id": bet_id,
                "user_id": user_id,
                "side": request.side,
                "amount": amount,
                "created_at": now,
            }
            self.ledger.hold_stake(
                user_id,
                amount,
                bet_id,
                f'Staked {amount} Aura on "{request.side.value}" for bet: "{_excerpt(bet.description)}"',
            )
            self.storage.insert(self.storage.bet_participants, participant_id, participant_data)
            self.storage.insert(self.storage.participant_index, (bet_id, user_id), participant_id)

        logger.info("Stake of %d on %s placed by %s for bet %s", amount, request.side.value, user_id, bet_id)
        return BetParticipant(**participant_data)

    # Proofs

    def submit_bet_proof(self, bet_id: UUID, request: SubmitProofRequest) -> BetProof:
        with self.storage.lock(bet_ids=[bet_id]):
            bet = self.get_bet(bet_id)
            if bet.status != BetStatus.ACTIVE:
                raise InvalidStateTransitionError(f"Cannot submit proof for {bet.status.value} bet")

            now = self.now()
            grace = timedelta(hours=self.settings.proof_grace_period_hours)
            if now > bet.deadline + grace:
                raise InvalidStateTransitionError("Deadline has passed (including grace period)")

            if request.user_id != bet.proof_submitter():
                if bet.bet_type == BetType.SELF:
                    raise PermissionDeniedError("Only the bet creator can submit proof for self bets")
                raise PermissionDeniedError("Only the target user can submit proof for callouts/dares")

            if not request.media_url or not request.media_key:
                raise InvalidInputError("Media URL and key are required")
            _validate_url(request.media_url, "media URL")
            if request.thumbnail_url:
                _validate_url(request.thumbnail_url, "thumbnail URL")

            caption = request.caption.strip() if request.caption else None
            max_caption = self.settings.max_caption_length
            if caption and len(caption) > max_caption:
                raise InvalidInputError(f"Caption too long (max {max_caption} characters)")

            proof_id = uuid4()
            proof_data = {
                "id": proof_id,
                "bet_id": bet_id,
                "user_id": request.user_id,
                "media_type": request.media_type,
                "media_url": request.media_url,
                "media_key": request.media_key,
                "thumbnail_url": request.thumbnail_url or None,
                "thumbnail_key": request.thumbnail_key or None,
                "caption": caption or None,
                "created_at": now,
            }
            self.storage.insert(self.storage.bet_proofs, proof_id, proof_data)

        logger.info("Proof %s (%s) submitted for bet %s", proof_id, request.media_type.value, bet_id)
        return BetProof(**proof_data)

    def delete_bet_proof(self, proof_id: UUID, user_id: str) -> None:
        proof = self.storage.bet_proofs.get(proof_id)
        if not proof:
            raise ProofNotFoundError("Proof not found")
        if proof["user_id"] != user_id:
            raise PermissionDeniedError("You can only delete your own proofs")

        with self.storage.lock(bet_ids=[proof["bet_id"]]):
            bet = self.get_bet(proof["bet_id"])
            if bet.status != BetStatus.ACTIVE:
                raise InvalidStateTransitionError("Cannot delete proof from resolved bet")
            if self.storage.remove(self.storage.bet_proofs, proof_id) is None:
                raise ProofNotFoundError("Proof not found")

        logger.info("Proof %s deleted from bet %s", proof_id, bet.id)

    # Resolution

    def resolve_bet(self, bet_id: UUID, request: ResolveBetRequest) -> BetResolution:
        actor = request.resolved_by
        outcome = request.outcome

        with self.storage.lock(bet_ids=[bet_id]):
            bet = self.get_bet(bet_id)
            new_status = transition(bet.status, outcome, bet.bet_type)
            if not bet.can_resolve(actor):
                raise PermissionDeniedError("Only the bet creator or target can resolve this bet")

            participants = self.get_bet_participants(bet_id)
            affected = {p.user_id for p in participants} | {bet.creator_id, bet.target_user_id}

            with self.storage.lock(user_ids=affected):
                for user_id in affected - {None}:
                    self.ledger.get_wallet(user_id)

                plan = calculate_payouts(participants, outcome, self.settings.dust_policy)

                penalty = 0
                if bet.bet_type == BetType.SELF and outcome == BetOutcome.NO:
                    own_stake = next(
                        (p.amount for p in participants
                         if p.user_id == bet.creator_id and p.side == BetSide.YES),
                        0,
                    )
                    penalty = (bet.creation_cost + own_stake) * self.settings.failure_penalty_percent // 100
                    balance_after_payout = (
                        self.ledger.get_wallet(bet.creator_id).aura_balance
                        + plan.amount_for(bet.creator_id)
                    )
                    if penalty > balance_after_payout:
                        logger.warning(
                            "Skipping failure penalty of %d for %s on bet %s: balance %d",
                            penalty, bet.creator_id, bet_id, balance_after_payout,
                        )
                        penalty = 0

                now = self.now()
                bet_row = self.storage.bets[bet_id]
                bet_row["status"] = new_status
                bet_row["updated_at"] = now

                for participant in participants:
                    self.ledger.release_stake(participant.user_id, participant.amount)

                excerpt = _excerpt(bet.description)
                for payout in plan.payouts:
                    if payout.kind == PayoutKind.WIN:
                        description = f'Won {payout.amount} Aura from bet: "{excerpt}"'
                    else:
                        description = f"Refunded {payout.amount} Aura from {outcome.value} bet"
                    self.ledger.credit(
                        payout.user_id,
                        payout.amount,
                        payout.kind.transaction_type,
                        description,
                        bet_id,
                    )

                if penalty:
                    self.ledger.debit(
                        bet.creator_id,
                        penalty,
                        TransactionType.FAILURE_PENALTY,
                        f"Failure penalty ({self.settings.failure_penalty_percent}%) "
                        f'for failed bet: "{excerpt}"',
                        bet_id,
                    )

                self._update_resolution_stats(bet, outcome)

                resolution_id = uuid4()
                notes = request.notes.strip() if request.notes else None
                resolution_data = {
                    "id": resolution_id,
                    "bet_id": bet_id,
                    "outcome": outcome,
                    "resolved_by": actor.user_id,
                    "resolver_role": actor.role,
                    "resolved_at": now,
                    "notes": notes or None,
                    "total_pot": plan.total_pot,
                    "total_paid": plan.total_paid,
                    "unallocated": plan.unallocated,
                    "penalty": penalty,
                }
                self.storage.insert(self.storage.bet_resolutions, bet_id, resolution_data)

        logger.info(
            "Bet %s resolved %s by %s: pot=%d paid=%d payouts=%d unallocated=%d",
            bet_id, outcome.value, actor.user_id or actor.role.value,
            plan.total_pot, plan.total_paid, len(plan.payouts), plan.unallocated,
        )
        return BetResolution(**resolution_data)

    def _update_resolution_stats(self, bet: Bet, outcome: BetOutcome) -> None:
        creator_counter, target_counter = OUTCOME_STATS[outcome]
        if creator_counter:
            self.ledger.increment_stats(bet.creator_id, **{creator_counter: 1})
        self.ledger.recompute_vibe_score(bet.creator_id)

        if bet.is_targeted and bet.target_user_id:
            self.ledger.increment_stats(bet.target_user_id, **{target_counter: 1})
            self.ledger.recompute_vibe_score(bet.target_user_id)

    def auto_expire_bets(self) -> int:
        """Expire every active bet past its deadline. Returns how many were expired."""
        now = self.now()
        overdue = [
            b["id"] for b in self.storage.snapshot(self.storage.bets)
            if b["status"] == BetStatus.ACTIVE and b["deadline"] < now
        ]

        expired = 0
        for bet_id in overdue:
            try:
                self.resolve_bet(
                    bet_id,
                    ResolveBetRequest(
                        resolved_by=SYSTEM_ACTOR,
                        outcome=BetOutcome.EXPIRED,
                        notes=AUTO_EXPIRE_NOTE,
                    ),
                )
                expired += 1
            except Exception:
                logger.exception("Failed to expire bet %s", bet_id)

        logger.info("Auto-expire sweep: %d of %d overdue bets expired", expired, len(overdue))
        return expired

    # Queries

    def get_bet(self, bet_id: UUID) -> Bet:
        bet_data = self.storage.bets.get(bet_id)
        if not bet_data:
            raise BetNotFoundError(f"Bet {bet_id} not found")
        return Bet(**bet_data)

    def get_bets_by_chat(
        self, chat_id: str, status: Optional[BetStatus] = None, limit: int = 50
    ) -> list[Bet]:
        bets = [
            Bet(**b) for b in self.storage.snapshot(self.storage.bets)
            if b["chat_id"] == chat_id and (status is None or b["status"] == status)
        ]
        bets.sort(key=lambda b: b.created_at, reverse=True)
        return bets[:limit]

    def get_bet_participants(self, bet_id: UUID) -> list[BetParticipant]:
        return [BetParticipant(**p) for p in self.storage.participants_for_bet(bet_id)]

    def get_user_stake(self, bet_id: UUID, user_id: str) -> Optional[BetParticipant]:
        participant_id = self.storage.participant_index.get((bet_id, user_id))
        if participant_id is None:
            return None
        return BetParticipant(**self.storage.bet_participants[participant_id])

    def get_bet_totals(self, bet_id: UUID) -> BetTotals:
        participants = self.get_bet_participants(bet_id)
        yes = [p.amount for p in participants if p.side == BetSide.YES]
        no = [p.amount for p in participants if p.side == BetSide.NO]
        return BetTotals(
            total_yes=sum(yes),
            total_no=sum(no),
            total_pot=sum(yes) + sum(no),
            yes_count=len(yes),
            no_count=len(no),
        )

    def get_bet_detail(self, bet_id: UUID, viewer_id: str) -> BetDetail:
        bet = self.get_bet(bet_id)
        if not self.membership.is_member(viewer_id, bet.chat_id):
            raise PermissionDeniedError("You do not have access to this bet")
        return BetDetail(
            bet=bet,
            participants=self.get_bet_participants(bet_id),
            totals=self.get_bet_totals(bet_id),
            user_stake=self.get_user_stake(bet_id, viewer_id),
        )

    def get_bet_proofs(self, bet_id: UUID) -> list[BetProof]:
        proofs = [
            BetProof(**p) for p in self.storage.snapshot(self.storage.bet_proofs)
            if p["bet_id"] == bet_id
        ]
        proofs.sort(key=lambda p: p.created_at, reverse=True)
        return proofs

    def get_user_proofs(self, bet_id: UUID, user_id: str) -> list[BetProof]:
        return [p for p in self.get_bet_proofs(bet_id) if p.user_id == user_id]

    def get_bet_resolution(self, bet_id: UUID) -> Optional[BetResolution]:
        resolution = self.storage.bet_resolutions.get(bet_id)
        return BetResolution(**resolution) if resolution else None
