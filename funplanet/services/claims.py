"""Reward claims: eligibility rules, settlement saga and reconciliation.

A claim moves through settlement stages recorded on its `camly_claims` row:

    intent -> credited -> deducted -> submitted -> (completed)

`credited` only applies to reward claims, which first add the reward to the
user's pending balance. Withdrawals start at `intent` and go straight to
`deducted`. The transaction hash is stored before waiting for confirmation,
so a claim interrupted at any point can be settled by `reconcile_claims`.
"""
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from web3 import Web3

from funplanet.config.settings import (
    BSC_CHAIN_ID,
    BSCSCAN_TX_URL,
    CLAIM_SIGNATURE_DECIMALS,
    DAILY_LIMIT,
    MIN_GAS_BNB,
)
from funplanet.models.schemas import ClaimStatus, ClaimType, SettlementStage
from funplanet.services.ledger import RewardLedger, start_of_day, utc_now
from funplanet.utils.chain import (
    CHAIN_ERROR_MESSAGES,
    CHAIN_ERROR_STATUS,
    KeySigner,
    TokenSigner,
    claim_message_hash,
    classify_chain_error,
    parent_approval_message,
    recover_message_signer,
)
from funplanet.utils.errors import ApiError, ChainError

logger = logging.getLogger(__name__)

SignerFactory = Callable[[], Awaitable[TokenSigner]]

# Claims whose transaction has vanished from the node for this long are
# treated as dropped and refunded.
DROPPED_TX_MINUTES = 60


@dataclass
class ClaimContext:
    user_id: str
    wallet_address: str
    game_id: Optional[str] = None


@dataclass(frozen=True)
class ClaimRule:
    amount: Optional[float]
    existing: Callable[[RewardLedger, ClaimContext], List[Dict[str, Any]]]
    check: Optional[Callable[[RewardLedger, ClaimContext], None]] = None


@dataclass
class SettlementResult:
    tx_hash: str
    block_number: Optional[int]
    new_pending: float


def _first_wallet_claims(ledger: RewardLedger, ctx: ClaimContext) -> List[Dict[str, Any]]:
    by_user = ledger.find_claims(ClaimType.FIRST_WALLET.value, user_id=ctx.user_id)
    by_wallet = ledger.find_claims(ClaimType.FIRST_WALLET.value, wallet_address=ctx.wallet_address)
    seen = {claim["id"] for claim in by_user}
    return by_user + [claim for claim in by_wallet if claim["id"] not in seen]


def _game_completion_claims(ledger: RewardLedger, ctx: ClaimContext) -> List[Dict[str, Any]]:
    return ledger.find_claims(ClaimType.GAME_COMPLETION.value, user_id=ctx.user_id, since=start_of_day())


def _game_upload_claims(ledger: RewardLedger, ctx: ClaimContext) -> List[Dict[str, Any]]:
    if not ctx.game_id:
        raise ApiError(400, "gameId is required for game_upload claims")
    return ledger.find_claims(ClaimType.GAME_UPLOAD.value, game_id=ctx.game_id)


def _no_claims(ledger: RewardLedger, ctx: ClaimContext) -> List[Dict[str, Any]]:
    return []


def _check_game_completed(ledger: RewardLedger, ctx: ClaimContext) -> None:
    if not ledger.has_completed_game(ctx.user_id):
        raise ApiError(400, "Complete at least one game level to claim this reward")


def _check_game_approved(ledger: RewardLedger, ctx: ClaimContext) -> None:
    game = ledger.get_uploaded_game(ctx.game_id)
    if not game:
        raise ApiError(404, "Game not found")
    if game.get("user_id") != ctx.user_id:
        raise ApiError(403, "You can only claim rewards for your own games")
    if game.get("status") != "approved":
        raise ApiError(400, "Game is not approved yet")


CLAIM_RULES: Dict[ClaimType, ClaimRule] = {
    ClaimType.FIRST_WALLET: ClaimRule(amount=50000, existing=_first_wallet_claims),
    ClaimType.GAME_COMPLETION: ClaimRule(amount=10000, existing=_game_completion_claims, check=_check_game_completed),
    ClaimType.GAME_UPLOAD: ClaimRule(amount=500000, existing=_game_upload_claims, check=_check_game_approved),
    ClaimType.ARBITRARY: ClaimRule(amount=None, existing=_no_claims),
}

_missing_rules = set(ClaimType) - set(CLAIM_RULES)
if _missing_rules:
    raise RuntimeError(f"No claim rule for: {sorted(t.value for t in _missing_rules)}")

# Claim types with a fixed reward, accepted by claim-camly.
REWARD_CLAIM_TYPES = {claim_type for claim_type, rule in CLAIM_RULES.items() if rule.amount is not None}


def parse_reward_claim_type(raw: str) -> ClaimType:
    try:
        claim_type = ClaimType(raw)
    except ValueError:
        raise ApiError(400, "Invalid claim type")
    if claim_type not in REWARD_CLAIM_TYPES:
        raise ApiError(400, "Invalid claim type")
    return claim_type


def resolve_existing_claim(claims: List[Dict[str, Any]], user_id: str) -> Optional[Dict[str, Any]]:
    """Return the caller's resumable claim, or raise if the reward is taken.

    Failed and pending_approval claims of the caller are resumed. Another
    user's failed claim does not block; anything else does.
    """
    resumable = None
    for claim in claims:
        status = claim.get("status")
        own = claim.get("user_id") == user_id
        if status == ClaimStatus.FAILED.value:
            if own and resumable is None:
                resumable = claim
            continue
        if status == ClaimStatus.PENDING_APPROVAL.value and own:
            if resumable is None or resumable.get("status") == ClaimStatus.FAILED.value:
                resumable = claim
            continue
        raise ApiError(400, "Reward already claimed", {"status": status})
    return resumable


def check_wallet(
    ledger: RewardLedger, user_id: str, wallet_address: str, allow_unbound: bool = False
) -> Tuple[str, bool]:
    """Validate the destination wallet against the caller's profile.

    Returns the lowercased wallet and whether the profile already holds it.
    Nothing is written here: a profile without a wallet is a mismatch unless
    `allow_unbound` is set, in which case the caller binds the wallet once
    the claim has settled.
    """
    if not wallet_address or not Web3.is_address(wallet_address):
        raise ApiError(400, "Invalid wallet address")
    profile = ledger.get_profile(user_id)
    if not profile:
        raise ApiError(404, "Profile not found")
    on_file = profile.get("wallet_address")
    if not on_file and allow_unbound:
        return wallet_address.lower(), False
    if not on_file or on_file.lower() != wallet_address.lower():
        raise ApiError(403, "Wallet address mismatch")
    return wallet_address.lower(), True


def missing_parent_approval(
    ledger: RewardLedger, user_id: str, wallet_address: str, amount: float, signature: Optional[str]
) -> Optional[str]:
    """Return the parent id when approval is required but not supplied.

    A supplied signature must recover to the parent's wallet, otherwise 403.
    """
    link = ledger.get_parent_link(user_id)
    if not link:
        return None
    parent_id = link["parent_id"]
    if not signature:
        return parent_id
    parent = ledger.get_profile(parent_id) or {}
    parent_wallet = parent.get("wallet_address")
    if not parent_wallet:
        raise ApiError(403, "Parent wallet not linked")
    message = parent_approval_message(user_id, amount, wallet_address)
    recovered = recover_message_signer(message, signature)
    if not recovered or recovered.lower() != parent_wallet.lower():
        raise ApiError(403, "Invalid parent signature")
    return None


def check_balance(ledger: RewardLedger, user_id: str, amount: float) -> float:
    balance = ledger.get_pending_balance(user_id)
    if balance < amount:
        raise ApiError(400, "Insufficient balance", {"current_balance": balance, "requested": amount})
    return balance


def check_daily_cap(ledger: RewardLedger, user_id: str, amount: float) -> float:
    """Raise if `amount` would push today's withdrawals past DAILY_LIMIT."""
    claimed = ledger.daily_claimed(user_id)
    if claimed + amount > DAILY_LIMIT:
        raise ApiError(400, "Daily claim limit exceeded", {
            "daily_claimed": claimed,
            "daily_limit": DAILY_LIMIT,
            "daily_remaining": max(0, DAILY_LIMIT - claimed),
        })
    return claimed


def _mark_failed(ledger: RewardLedger, claim_id: str, error: str) -> None:
    ledger.update_claim(claim_id, {"status": ClaimStatus.FAILED.value, "error_message": error})


def compensate_claim(ledger: RewardLedger, claim: Dict[str, Any], error: str, source: str = "rollback_tx_failed") -> bool:
    """Credit a deducted amount back and fail the claim.

    If the credit itself fails the claim is left pending so reconciliation
    retries it.
    """
    try:
        ledger.add_pending_reward(claim["user_id"], float(claim["amount"]), source)
    except Exception as e:
        logger.error(f"❌ Compensation for claim {claim['id']} failed, left for reconciliation: {str(e)}")
        ledger.update_claim(claim["id"], {"error_message": error})
        return False
    _mark_failed(ledger, claim["id"], error)
    return True


def finalize_claim(ledger: RewardLedger, claim: Dict[str, Any], tx_hash: str) -> None:
    fields = {
        "status": ClaimStatus.COMPLETED.value,
        "tx_hash": tx_hash,
        "claimed_at": utc_now().isoformat(),
        "error_message": None,
    }
    ledger.update_claim(claim["id"], fields)
    if claim.get("claim_type") == ClaimType.ARBITRARY.value:
        amount = float(claim["amount"])
        ledger.log_daily_claim(claim["user_id"], amount, tx_hash)
        ledger.record_transaction(
            claim["user_id"], -amount, "withdrawal_completed",
            f"Claimed {amount} CAMLY to {claim.get('wallet_address')}",
        )


def _chain_failure(error: Exception, claim_id: str) -> ApiError:
    kind = classify_chain_error(error)
    return ApiError(CHAIN_ERROR_STATUS[kind], CHAIN_ERROR_MESSAGES[kind], {
        "details": str(error)[:200],
        "claimId": claim_id,
    })


def _unconfirmed(claim_id: str, tx_hash: str, reason: str) -> ApiError:
    logger.warning(f"⏳ Claim {claim_id} unconfirmed, left for reconciliation: {reason}")
    return ApiError(504, CHAIN_ERROR_MESSAGES["timeout"], {
        "txHash": tx_hash,
        "status": ClaimStatus.PENDING.value,
        "claimId": claim_id,
    })


async def settle_claim(ledger: RewardLedger, signer: TokenSigner, claim: Dict[str, Any]) -> SettlementResult:
    """Deduct, transfer and confirm one claim row.

    The row must carry user_id, wallet_address and amount. Pre-flight
    failures happen before any deduction.
    """
    claim_id = claim["id"]
    user_id = claim["user_id"]
    wallet = claim["wallet_address"]
    amount = float(claim["amount"])

    pool_balance = signer.token_balance()
    if pool_balance < amount:
        _mark_failed(ledger, claim_id, "Reward pool insufficient")
        raise ApiError(400, "Reward pool insufficient", {"pool_balance": pool_balance, "requested": amount})
    has_gas, gas_message = signer.has_gas(MIN_GAS_BNB)
    if not has_gas:
        logger.warning(f"⛽ {gas_message}")
        _mark_failed(ledger, claim_id, "Insufficient BNB for gas fees")
        raise ApiError(400, "Insufficient BNB for gas fees", {"bnb_balance": signer.native_balance()})

    deduction = ledger.claim_from_pending(user_id, amount)
    if not deduction["success"]:
        _mark_failed(ledger, claim_id, deduction.get("error") or "Insufficient balance")
        raise ApiError(400, "Insufficient balance", {
            "current_balance": ledger.get_pending_balance(user_id),
            "requested": amount,
        })
    ledger.update_claim(claim_id, {"settlement_stage": SettlementStage.DEDUCTED.value})

    try:
        tx_hash = await signer.submit_transfer(wallet, amount)
    except Exception as e:
        logger.error(f"❌ Transfer for claim {claim_id} failed: {str(e)}")
        compensate_claim(ledger, claim, str(e))
        raise _chain_failure(e, claim_id)
    ledger.update_claim(claim_id, {"settlement_stage": SettlementStage.SUBMITTED.value, "tx_hash": tx_hash})

    try:
        receipt = await signer.confirm(tx_hash)
    except ChainError as e:
        if e.kind != "reverted":
            raise _unconfirmed(claim_id, tx_hash, e.message)
        compensate_claim(ledger, claim, e.message)
        raise _chain_failure(e, claim_id)
    except Exception as e:
        raise _unconfirmed(claim_id, tx_hash, str(e))

    try:
        finalize_claim(ledger, claim, tx_hash)
    except Exception as e:
        # The transfer went through; reconciliation completes the row.
        logger.error(f"❌ Claim {claim_id} paid in {tx_hash} but not finalized: {str(e)}")
    logger.info(f"✅ Claim {claim_id} settled: {amount} CAMLY -> {wallet} ({tx_hash})")
    return SettlementResult(
        tx_hash=tx_hash,
        block_number=receipt.get("blockNumber"),
        new_pending=deduction["new_pending"],
    )


async def process_reward_claim(
    ledger: RewardLedger,
    signer_factory: SignerFactory,
    user_id: str,
    wallet_address: str,
    raw_claim_type: str,
    game_id: Optional[str] = None,
    parent_signature: Optional[str] = None,
) -> Dict[str, Any]:
    wallet, bound = check_wallet(ledger, user_id, wallet_address, allow_unbound=True)
    claim_type = parse_reward_claim_type(raw_claim_type)
    rule = CLAIM_RULES[claim_type]
    ctx = ClaimContext(user_id=user_id, wallet_address=wallet, game_id=game_id)

    claim = resolve_existing_claim(rule.existing(ledger, ctx), user_id)
    if rule.check:
        rule.check(ledger, ctx)
    amount = float(rule.amount)
    parent_id = missing_parent_approval(ledger, user_id, wallet, amount, parent_signature)

    is_new = claim is None
    if is_new:
        claim = ledger.insert_claim({
            "user_id": user_id,
            "wallet_address": wallet,
            "claim_type": claim_type.value,
            "amount": amount,
            "game_id": game_id,
            "status": ClaimStatus.PENDING.value,
            "settlement_stage": SettlementStage.INTENT.value,
        })
    else:
        logger.info(f"🔄 Resuming claim {claim['id']} ({claim.get('status')})")
        ledger.update_claim(claim["id"], {
            "status": ClaimStatus.PENDING.value,
            "wallet_address": wallet,
            "error_message": None,
        })
        claim = {**claim, "wallet_address": wallet, "status": ClaimStatus.PENDING.value}

    if claim.get("settlement_stage") in (None, SettlementStage.INTENT.value):
        try:
            ledger.add_pending_reward(user_id, amount, claim_type.value)
        except Exception as e:
            logger.error(f"❌ Failed to credit {claim_type.value} reward for {user_id}: {str(e)}")
            if is_new:
                ledger.delete_claim(claim["id"])
            else:
                _mark_failed(ledger, claim["id"], str(e))
            raise ApiError(500, "Failed to credit reward")
        ledger.update_claim(claim["id"], {"settlement_stage": SettlementStage.CREDITED.value})

    if parent_id:
        ledger.update_claim(claim["id"], {"status": ClaimStatus.PENDING_APPROVAL.value})
        return {
            "success": True,
            "status": ClaimStatus.PENDING_APPROVAL.value,
            "txHash": None,
            "amount": amount,
            "claimId": claim["id"],
            "requiresParentApproval": True,
            "parentId": parent_id,
        }

    signer = await signer_factory()
    result = await settle_claim(ledger, signer, claim)
    if not bound:
        try:
            ledger.bind_wallet(user_id, wallet)
        except Exception as e:
            logger.error(f"❌ Claim {claim['id']} paid but wallet {wallet} not bound to {user_id}: {str(e)}")
    return {
        "success": True,
        "status": ClaimStatus.COMPLETED.value,
        "txHash": result.tx_hash,
        "amount": amount,
        "claimId": claim["id"],
    }


async def process_withdrawal(
    ledger: RewardLedger,
    signer_factory: SignerFactory,
    user_id: str,
    wallet_address: str,
    amount: float,
    parent_signature: Optional[str] = None,
) -> Dict[str, Any]:
    """Pay out part of the pending balance on-chain.

    Shared by claim-arbitrary and claim-camly-direct; returns the claim row,
    the settlement result and the remaining daily allowance.
    """
    wallet, _ = check_wallet(ledger, user_id, wallet_address)
    check_balance(ledger, user_id, amount)
    parent_id = missing_parent_approval(ledger, user_id, wallet, amount, parent_signature)
    if parent_id:
        raise ApiError(400, "Parent approval required", {"requiresParentApproval": True, "parentId": parent_id})
    claimed_today = check_daily_cap(ledger, user_id, amount)

    claim = ledger.insert_claim({
        "user_id": user_id,
        "wallet_address": wallet,
        "claim_type": ClaimType.ARBITRARY.value,
        "amount": amount,
        "status": ClaimStatus.PENDING.value,
        "settlement_stage": SettlementStage.INTENT.value,
    })
    signer = await signer_factory()
    result = await settle_claim(ledger, signer, claim)
    return {
        "claim": claim,
        "result": result,
        "daily_remaining": max(0, DAILY_LIMIT - claimed_today - amount),
    }


def direct_claim_response(wallet_address: str, amount: float, result: SettlementResult) -> Dict[str, Any]:
    return {
        "success": True,
        "tx_hash": result.tx_hash,
        "amount": amount,
        "to_address": wallet_address,
        "block_number": result.block_number,
        "bscscan_url": f"{BSCSCAN_TX_URL}{result.tx_hash}",
    }


def issue_claim_signature(
    ledger: RewardLedger,
    signer: KeySigner,
    contract_address: str,
    user_id: str,
    wallet_address: str,
    amount: float,
    parent_signature: Optional[str] = None,
) -> Dict[str, Any]:
    """Sign a claim the user redeems on the rewards contract.

    Nothing is sent on-chain here; the balance is deducted once the signature
    exists and the claim row is stored with stage `signed`.
    """
    wallet, _ = check_wallet(ledger, user_id, wallet_address)
    check_balance(ledger, user_id, amount)
    parent_id = missing_parent_approval(ledger, user_id, wallet, amount, parent_signature)
    if parent_id:
        raise ApiError(400, "Parent approval required", {"requiresParentApproval": True, "parentId": parent_id})
    check_daily_cap(ledger, user_id, amount)

    amount_wei = int(Decimal(str(amount)) * (10 ** CLAIM_SIGNATURE_DECIMALS))
    nonce = bytes(Web3.keccak(text=f"{user_id}-{wallet}-{amount}-{int(time.time() * 1000)}-{secrets.token_hex(8)}"))
    message_hash = claim_message_hash(wallet, amount_wei, nonce, BSC_CHAIN_ID, contract_address)
    signature = signer.sign(message_hash)
    nonce_hex = Web3.to_hex(nonce)

    deduction = ledger.claim_from_pending(user_id, amount)
    if not deduction["success"]:
        raise ApiError(400, "Insufficient balance", {
            "current_balance": ledger.get_pending_balance(user_id),
            "requested": amount,
        })
    ledger.insert_claim({
        "user_id": user_id,
        "wallet_address": wallet,
        "claim_type": ClaimType.ARBITRARY.value,
        "amount": amount,
        "status": ClaimStatus.PENDING.value,
        "settlement_stage": SettlementStage.SIGNED.value,
        "tx_hash": nonce_hex,
    })
    ledger.log_daily_claim(user_id, amount, nonce_hex)
    ledger.record_transaction(user_id, -amount, "withdrawal_pending", f"Signed claim of {amount} CAMLY to {wallet}")
    logger.info(f"✍️ Signed claim for {user_id}: {amount} CAMLY, nonce {nonce_hex}")
    return {
        "success": True,
        "signature": signature,
        "nonce": nonce_hex,
        "amount_wei": str(amount_wei),
        "contract_address": Web3.to_checksum_address(contract_address),
        "chain_id": BSC_CHAIN_ID,
    }


def _claim_age_minutes(claim: Dict[str, Any]) -> float:
    created_at = claim.get("created_at")
    if not created_at:
        return 0.0
    created = datetime.fromisoformat(str(created_at).replace("Z", "+00:00"))
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (utc_now() - created).total_seconds() / 60


async def reconcile_claim(ledger: RewardLedger, signer: Optional[TokenSigner], claim: Dict[str, Any]) -> str:
    """Settle one stale pending claim from its recorded stage; returns the outcome."""
    stage = claim.get("settlement_stage")
    if stage == SettlementStage.SIGNED.value:
        return "skipped"
    if stage in (None, SettlementStage.INTENT.value, SettlementStage.CREDITED.value):
        _mark_failed(ledger, claim["id"], "Interrupted before deduction")
        return "failed"
    if stage == SettlementStage.DEDUCTED.value or not claim.get("tx_hash"):
        return "compensated" if compensate_claim(ledger, claim, "Interrupted after deduction") else "unresolved"

    tx_hash = claim["tx_hash"]
    receipt = signer.get_receipt(tx_hash)
    if receipt is None:
        if _claim_age_minutes(claim) >= DROPPED_TX_MINUTES and not signer.transaction_known(tx_hash):
            return "compensated" if compensate_claim(ledger, claim, f"Transaction {tx_hash} dropped") else "unresolved"
        return "unresolved"
    if receipt.get("status") == 1:
        finalize_claim(ledger, claim, tx_hash)
        return "completed"
    return "compensated" if compensate_claim(ledger, claim, f"Transaction {tx_hash} reverted") else "unresolved"


async def reconcile_claims(ledger: RewardLedger, signer_factory: SignerFactory, older_than_minutes: int) -> Dict[str, Any]:
    cutoff = utc_now() - timedelta(minutes=older_than_minutes)
    claims = ledger.list_stale_claims(cutoff)
    needs_chain = any(
        claim.get("settlement_stage") == SettlementStage.SUBMITTED.value and claim.get("tx_hash")
        for claim in claims
    )
    signer = await signer_factory() if needs_chain else None

    results = []
    counts = {"completed": 0, "failed": 0, "unresolved": 0}
    for claim in claims:
        outcome = await reconcile_claim(ledger, signer, claim)
        results.append({"claim_id": claim["id"], "stage": claim.get("settlement_stage"), "outcome": outcome})
        if outcome == "completed":
            counts["completed"] += 1
        elif outcome in ("failed", "compensated"):
            counts["failed"] += 1
        elif outcome == "unresolved":
            counts["unresolved"] += 1
    logger.info(f"🔄 Reconciled {len(claims)} claims: {counts}")
    return {"success": True, "checked": len(claims), **counts, "results": results}
