from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List


class ClaimType(str, Enum):
    FIRST_WALLET = "first_wallet"
    GAME_COMPLETION = "game_completion"
    GAME_UPLOAD = "game_upload"
    ARBITRARY = "arbitrary"


class ClaimStatus(str, Enum):
    PENDING = "pending"
    PENDING_APPROVAL = "pending_approval"
    COMPLETED = "completed"
    FAILED = "failed"


class SettlementStage(str, Enum):
    INTENT = "intent"
    CREDITED = "credited"
    DEDUCTED = "deducted"
    SUBMITTED = "submitted"
    SIGNED = "signed"


class ClaimCamlyRequest(BaseModel):
    walletAddress: str
    claimType: str
    gameId: Optional[str] = None
    parentSignature: Optional[str] = None


class ClaimArbitraryRequest(BaseModel):
    walletAddress: str
    amount: float = Field(..., gt=0)
    parentSignature: Optional[str] = None


class WalletAmountRequest(BaseModel):
    """Body shared by claim-camly-direct and sign-rewards-claim."""
    wallet_address: str
    amount: float = Field(..., gt=0)
    parent_signature: Optional[str] = None


class DonationProcessRequest(BaseModel):
    donation_id: Optional[str] = None
    process_all: bool = False


class WithdrawalProcessRequest(BaseModel):
    withdrawal_id: str


class ReconcileRequest(BaseModel):
    older_than_minutes: int = Field(10, ge=0)


class ChatMessage(BaseModel):
    role: str
    content: str


class AngelChatRequest(BaseModel):
    messages: List[ChatMessage] = []
    userId: Optional[str] = None
    generateImageRequest: Optional[str] = None


class GameEvaluationRequest(BaseModel):
    game_id: str
    title: str
    description: Optional[str] = None
    categories: Optional[List[str]] = None
    thumbnail_url: Optional[str] = None


class GameSuggestionsRequest(BaseModel):
    userId: Optional[str] = None


class ItchioFetchRequest(BaseModel):
    url: str
