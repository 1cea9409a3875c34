from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict

from ledger.errors import InvalidInputError, InvalidStateTransitionError


class BetType(str, Enum):
    SELF = "self"
    CALLOUT = "callout"
    DARE = "dare"


class BetStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    DUCKED = "ducked"


class BetOutcome(str, Enum):
    YES = "yes"
    NO = "no"
    EXPIRED = "expired"
    DUCKED = "ducked"


class BetSide(str, Enum):
    YES = "yes"
    NO = "no"


class ProofMediaType(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"


class ActorRole(str, Enum):
    USER = "user"
    SYSTEM = "system"


TARGETED_BET_TYPES = {BetType.CALLOUT, BetType.DARE}

# "no" lands on EXPIRED rather than a dedicated lost state; kept for compatibility
# with existing clients.
OUTCOME_STATUS = {
    BetOutcome.YES: BetStatus.COMPLETED,
    BetOutcome.NO: BetStatus.EXPIRED,
    BetOutcome.EXPIRED: BetStatus.EXPIRED,
    BetOutcome.DUCKED: BetStatus.DUCKED,
}


def transition(status: BetStatus, outcome: BetOutcome, bet_type: BetType) -> BetStatus:
    """The only path out of ACTIVE; every terminal status is final."""
    if status != BetStatus.ACTIVE:
        raise InvalidStateTransitionError(f"Bet is already {status.value}")
    if outcome == BetOutcome.DUCKED and bet_type != BetType.CALLOUT:
        raise InvalidInputError("Only callouts can be marked as ducked")
    return OUTCOME_STATUS[outcome]


class Actor(BaseModel):
    role: ActorRole
    user_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def user(cls, user_id: str) -> "Actor":
        return cls(role=ActorRole.USER, user_id=user_id)

    @property
    def is_system(self) -> bool:
        return self.role == ActorRole.SYSTEM


SYSTEM_ACTOR = Actor(role=ActorRole.SYSTEM)


class CreateBetRequest(BaseModel):
    chat_id: str
    creator_id: str
    bet_type: BetType
    description: str
    deadline: datetime
    target_user_id: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "chat_id": "chat-123",
            "creator_id": "user-1",
            "bet_type": "callout",
            "description": "Sam will not finish the marathon",
            "deadline": "2026-12-01T18:00:00Z",
            "target_user_id": "user-2",
        }
    })


class PlaceStakeRequest(BaseModel):
    user_id: str
    side: BetSide
    amount: int


class SubmitProofRequest(BaseModel):
    user_id: str
    media_type: ProofMediaType
    media_url: str
    media_key: str
    thumbnail_url: Optional[str] = None
    thumbnail_key: Optional[str] = None
    caption: Optional[str] = None


class ResolveBetRequest(BaseModel):
    resolved_by: Actor
    outcome: BetOutcome
    notes: Optional[str] = None


class Bet(BaseModel):
    id: UUID
    chat_id: str
    creator_id: str
    bet_type: BetType
    description: str
    deadline: datetime
    status: BetStatus = BetStatus.ACTIVE
    target_user_id: Optional[str] = None
    creation_cost: int = 10
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_targeted(self) -> bool:
        return self.bet_type in TARGETED_BET_TYPES

    def can_stake(self, now: datetime) -> bool:
        return self.status == BetStatus.ACTIVE and now < self.deadline

    def proof_submitter(self) -> str:
        return self.target_user_id if self.is_targeted else self.creator_id

    def can_resolve(self, actor: Actor) -> bool:
        if actor.is_system:
            return True
        return actor.user_id is not None and actor.user_id in (self.creator_id, self.target_user_id)


class BetParticipant(BaseModel):
    id: UUID
    bet_id: UUID
    user_id: str
    side: BetSide
    amount: int = Field(..., gt=0)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BetProof(BaseModel):
    id: UUID
    bet_id: UUID
    user_id: str
    media_type: ProofMediaType
    media_url: str
    media_key: str
    thumbnail_url: Optional[str] = None
    thumbnail_key: Optional[str] = None
    caption: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BetResolution(BaseModel):
    id: UUID
    bet_id: UUID
    outcome: BetOutcome
    resolved_by: Optional[str] = None
    resolver_role: ActorRole
    resolved_at: datetime
    notes: Optional[str] = None
    total_pot: int = 0
    total_paid: int = 0
    unallocated: int = 0
    penalty: int = 0

    model_config = ConfigDict(from_attributes=True)


class BetTotals(BaseModel):
    total_yes: int
    total_no: int
    total_pot: int
    yes_count: int
    no_count: int


class BetDetail(BaseModel):
    bet: Bet
    participants: list[BetParticipant]
    totals: BetTotals
    user_stake: Optional[BetParticipant] = None
