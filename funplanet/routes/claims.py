from typing import Dict

from fastapi import APIRouter, Depends

from funplanet.models.schemas import ClaimArbitraryRequest, ClaimCamlyRequest, ReconcileRequest, WalletAmountRequest
from funplanet.services import claims
from funplanet.services.ledger import RewardLedger
from funplanet.utils.auth import get_current_user, require_admin
from funplanet.utils.chain import KeySigner
from funplanet.utils.dependencies import (
    get_claim_contract_address,
    get_claim_signer,
    get_ledger,
    get_reward_signer_factory,
)

router = APIRouter()


@router.post("/claim-camly")
async def claim_camly(
    body: ClaimCamlyRequest,
    user: Dict = Depends(get_current_user),
    ledger: RewardLedger = Depends(get_ledger),
    signer_factory: claims.SignerFactory = Depends(get_reward_signer_factory),
):
    """Claim a fixed platform reward and have it paid out on-chain."""
    return await claims.process_reward_claim(
        ledger,
        signer_factory,
        user["id"],
        body.walletAddress,
        body.claimType,
        game_id=body.gameId,
        parent_signature=body.parentSignature,
    )


@router.post("/claim-camly-direct")
async def claim_camly_direct(
    body: WalletAmountRequest,
    user: Dict = Depends(get_current_user),
    ledger: RewardLedger = Depends(get_ledger),
    signer_factory: claims.SignerFactory = Depends(get_reward_signer_factory),
):
    outcome = await claims.process_withdrawal(
        ledger, signer_factory, user["id"], body.wallet_address, body.amount, body.parent_signature,
    )
    return claims.direct_claim_response(body.wallet_address, body.amount, outcome["result"])


@router.post("/claim-arbitrary")
async def claim_arbitrary(
    body: ClaimArbitraryRequest,
    user: Dict = Depends(get_current_user),
    ledger: RewardLedger = Depends(get_ledger),
    signer_factory: claims.SignerFactory = Depends(get_reward_signer_factory),
):
    outcome = await claims.process_withdrawal(
        ledger, signer_factory, user["id"], body.walletAddress, body.amount, body.parentSignature,
    )
    result = outcome["result"]
    return {
        "success": True,
        "status": "completed",
        "txHash": result.tx_hash,
        "amount": body.amount,
        "newPending": result.new_pending,
        "dailyRemaining": outcome["daily_remaining"],
    }


@router.post("/sign-rewards-claim")
async def sign_rewards_claim(
    body: WalletAmountRequest,
    user: Dict = Depends(get_current_user),
    ledger: RewardLedger = Depends(get_ledger),
    signer: KeySigner = Depends(get_claim_signer),
    contract_address: str = Depends(get_claim_contract_address),
):
    return claims.issue_claim_signature(
        ledger, signer, contract_address, user["id"], body.wallet_address, body.amount, body.parent_signature,
    )


@router.post("/reconcile-claims")
async def reconcile_claims(
    body: ReconcileRequest = ReconcileRequest(),
    admin: Dict = Depends(require_admin),
    ledger: RewardLedger = Depends(get_ledger),
    signer_factory: claims.SignerFactory = Depends(get_reward_signer_factory),
):
    """Settle claims left pending by an interrupted request."""
    return await claims.reconcile_claims(ledger, signer_factory, body.older_than_minutes)
