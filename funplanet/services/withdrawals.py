import logging
from typing import Any, Dict

from funplanet.models.schemas import ClaimStatus, ClaimType
from funplanet.services.claims import SignerFactory, check_daily_cap
from funplanet.services.ledger import RewardLedger, utc_now
from funplanet.utils.chain import CHAIN_ERROR_MESSAGES, CHAIN_ERROR_STATUS, classify_chain_error
from funplanet.utils.errors import ApiError, ChainError

logger = logging.getLogger(__name__)


def _fail_withdrawal(ledger: RewardLedger, withdrawal: Dict[str, Any], error: Exception) -> ApiError:
    """Refund a withdrawal whose transfer failed, then mark it failed.

    If the refund cannot be credited the row keeps its status and admins are
    alerted instead.
    """
    withdrawal_id = withdrawal["id"]
    logger.error(f"❌ Withdrawal {withdrawal_id} failed: {str(error)}")
    kind = classify_chain_error(error)
    try:
        ledger.add_pending_reward(withdrawal["user_id"], float(withdrawal["amount"]), "rollback_withdrawal_failed")
    except Exception as e:
        logger.error(f"❌ Refund for withdrawal {withdrawal_id} failed, left for follow-up: {str(e)}")
        ledger.notify_admin(
            "withdrawal_refund_failed",
            "🚨 Withdrawal Refund Failed",
            f"Withdrawal {withdrawal_id} failed and its {withdrawal['amount']} CAMLY could not be refunded.",
            {"withdrawal_id": withdrawal_id, "user_id": withdrawal["user_id"], "error": str(e)[:200]},
            priority="high",
        )
        return ApiError(CHAIN_ERROR_STATUS[kind], "Blockchain transaction failed", {
            "details": str(error)[:200],
            "refunded": False,
        })
    ledger.update_withdrawal(withdrawal_id, {"status": "failed"})
    ledger.notify_user(
        withdrawal["user_id"],
        "withdrawal_failed",
        "Withdrawal Failed",
        "Your withdrawal failed due to a blockchain error. The amount has been returned to your pending balance.",
        {"withdrawal_id": withdrawal_id, "error": str(error)[:200]},
    )
    return ApiError(CHAIN_ERROR_STATUS[kind], "Blockchain transaction failed", {"details": str(error)[:200]})


def _unconfirmed(withdrawal_id: str, tx_hash: str, reason: str) -> ApiError:
    # Left in "processing"; the tx may still be mined.
    logger.warning(f"⏳ Withdrawal {withdrawal_id} unconfirmed: {reason}")
    return ApiError(504, CHAIN_ERROR_MESSAGES["timeout"], {"tx_hash": tx_hash, "status": "processing"})


async def process_approved_withdrawal(ledger: RewardLedger, signer_factory: SignerFactory, withdrawal_id: str) -> Dict[str, Any]:
    """Pay out an admin-approved withdrawal request.

    The amount left the pending balance when the request was filed, so a
    failed transfer credits it back. Payouts count against the same daily
    cap as direct withdrawals.
    """
    withdrawal = ledger.get_withdrawal(withdrawal_id)
    if not withdrawal:
        raise ApiError(404, "Withdrawal not found")
    if withdrawal.get("status") != "approved":
        raise ApiError(400, f"Withdrawal status is {withdrawal.get('status')}, not approved")

    user_id = withdrawal["user_id"]
    wallet = withdrawal["wallet_address"]
    amount = float(withdrawal["amount"])
    check_daily_cap(ledger, user_id, amount)
    signer = await signer_factory()

    try:
        tx_hash = await signer.submit_transfer(wallet, amount)
    except Exception as e:
        raise _fail_withdrawal(ledger, withdrawal, e)
    ledger.update_withdrawal(withdrawal_id, {"status": "processing", "tx_hash": tx_hash})

    try:
        await signer.confirm(tx_hash)
    except ChainError as e:
        if e.kind != "reverted":
            raise _unconfirmed(withdrawal_id, tx_hash, e.message)
        raise _fail_withdrawal(ledger, withdrawal, e)
    except Exception as e:
        raise _unconfirmed(withdrawal_id, tx_hash, str(e))

    ledger.update_withdrawal(withdrawal_id, {
        "status": "completed",
        "tx_hash": tx_hash,
        "completed_at": utc_now().isoformat(),
    })
    ledger.log_daily_claim(user_id, amount, tx_hash)
    ledger.insert_claim({
        "user_id": user_id,
        "wallet_address": wallet,
        "claim_type": ClaimType.ARBITRARY.value,
        "amount": amount,
        "status": ClaimStatus.COMPLETED.value,
        "tx_hash": tx_hash,
        "claimed_at": utc_now().isoformat(),
    })
    ledger.notify_user(
        user_id,
        "withdrawal_completed",
        "Withdrawal Completed",
        f"Your withdrawal of {amount:,.0f} CAMLY has been sent to your wallet",
        {"withdrawal_id": withdrawal_id, "tx_hash": tx_hash, "amount": amount},
    )
    logger.info(f"✅ Withdrawal {withdrawal_id} completed: {tx_hash}")
    return {"success": True, "tx_hash": tx_hash, "amount": amount, "wallet_address": wallet}
