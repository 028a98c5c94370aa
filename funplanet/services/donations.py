import asyncio
import logging
from typing import Any, Dict, List, Optional

from funplanet.config.settings import DONATION_TX_DELAY_SECONDS, DONATION_WALLET_ADDRESS, MIN_GAS_BNB
from funplanet.services.claims import SignerFactory
from funplanet.services.ledger import RewardLedger
from funplanet.utils.chain import CHAIN_ERROR_MESSAGES, TokenSigner, classify_chain_error
from funplanet.utils.errors import ApiError, ChainError

logger = logging.getLogger(__name__)

UNRECORDED_MESSAGE = "Transfer sent but not recorded"


def select_donations(ledger: RewardLedger, donation_id: Optional[str], process_all: bool) -> List[Dict[str, Any]]:
    if process_all:
        return ledger.list_offchain_donations()
    if donation_id:
        donation = ledger.get_donation(donation_id)
        if not donation:
            raise ApiError(404, "Donation not found")
        if donation.get("is_onchain"):
            raise ApiError(400, "Donation already processed on-chain")
        if donation.get("tx_hash"):
            raise ApiError(400, "Donation transfer already submitted", {"tx_hash": donation["tx_hash"]})
        return [donation]
    raise ApiError(400, "donation_id or process_all required")


def _failure(donation: Dict[str, Any], amount: float, error: Exception) -> Dict[str, Any]:
    kind = classify_chain_error(error)
    logger.error(f"❌ Donation {donation['id']} failed ({kind}): {str(error)}")
    return {"donation_id": donation["id"], "success": False, "amount": amount, "error": CHAIN_ERROR_MESSAGES[kind]}


def _unconfirmed(donation_id: str, amount: float, tx_hash: str, reason: str) -> Dict[str, Any]:
    # The row keeps its pending hash; the transfer may still be mined.
    logger.warning(f"⏳ Donation {donation_id} unconfirmed: {reason}")
    return {
        "donation_id": donation_id,
        "success": False,
        "status": "unconfirmed",
        "amount": amount,
        "tx_hash": tx_hash,
        "error": CHAIN_ERROR_MESSAGES["timeout"],
    }


def _release(ledger: RewardLedger, donation_id: str) -> None:
    try:
        ledger.set_donation_tx_hash(donation_id, None)
    except Exception as e:
        logger.error(f"❌ Could not clear pending transfer on donation {donation_id}: {str(e)}")


async def sweep_donation(ledger: RewardLedger, signer: TokenSigner, donation: Dict[str, Any]) -> Dict[str, Any]:
    """Transfer one donation and record the outcome on its row.

    The tx hash is written before waiting for the receipt, and a row carrying
    a hash is never picked up again by a sweep. A reverted transfer clears the
    hash so the donation can be retried.
    """
    donation_id = donation["id"]
    amount = float(donation.get("amount") or 0)
    try:
        tx_hash = await signer.submit_transfer(DONATION_WALLET_ADDRESS, amount)
    except Exception as e:
        return _failure(donation, amount, e)

    try:
        ledger.set_donation_tx_hash(donation_id, tx_hash)
    except Exception as e:
        logger.error(f"❌ Donation {donation_id} sent in {tx_hash} but pending hash not stored: {str(e)}")

    try:
        await signer.confirm(tx_hash)
    except ChainError as e:
        if e.kind == "reverted":
            _release(ledger, donation_id)
            return {**_failure(donation, amount, e), "tx_hash": tx_hash}
        return _unconfirmed(donation_id, amount, tx_hash, e.message)
    except Exception as e:
        return _unconfirmed(donation_id, amount, tx_hash, str(e))

    try:
        ledger.mark_donation_onchain(donation_id, tx_hash)
    except Exception as e:
        logger.error(f"❌ Donation {donation_id} paid in {tx_hash} but not recorded: {str(e)}")
        return {
            "donation_id": donation_id,
            "success": False,
            "status": "unrecorded",
            "amount": amount,
            "tx_hash": tx_hash,
            "error": UNRECORDED_MESSAGE,
        }
    logger.info(f"✅ Donation {donation_id} on-chain: {tx_hash}")
    return {"donation_id": donation_id, "success": True, "amount": amount, "tx_hash": tx_hash}


async def process_donations(
    ledger: RewardLedger,
    signer_factory: SignerFactory,
    donation_id: Optional[str] = None,
    process_all: bool = False,
    delay: float = DONATION_TX_DELAY_SECONDS,
) -> Dict[str, Any]:
    """Sweep off-chain donations to the treasury wallet, one transfer at a time.

    Pre-flight checks cover gas and the full CAMLY total before any transfer,
    so an underfunded reward wallet leaves every donation untouched. After
    that each donation's outcome is reported on its own.
    """
    donations = select_donations(ledger, donation_id, process_all)
    if not donations:
        return {"success": True, "processed": 0, "failed": 0, "message": "No donations to process", "results": []}

    total_amount = sum(float(d.get("amount") or 0) for d in donations)
    signer = await signer_factory()

    has_gas, gas_message = signer.has_gas(MIN_GAS_BNB)
    if not has_gas:
        bnb_balance = signer.native_balance()
        logger.warning(f"⛽ {gas_message}")
        ledger.notify_admin(
            "low_gas",
            "⛽ Low BNB for Donation Processing",
            f"Reward wallet has only {bnb_balance} BNB. Need more for gas fees.",
            {"bnb_balance": bnb_balance},
            priority="high",
        )
        raise ApiError(400, "Insufficient BNB for gas fees", {"bnb_balance": bnb_balance})

    available = signer.token_balance()
    if available < total_amount:
        ledger.notify_admin(
            "low_camly",
            "⚠️ Insufficient CAMLY for Donations",
            f"Need {total_amount} CAMLY but only {available} available in reward wallet.",
            {"available": available, "required": total_amount},
            priority="high",
        )
        raise ApiError(400, "Insufficient CAMLY in reward wallet", {"required": total_amount, "available": available})

    results = []
    for index, donation in enumerate(donations):
        if index > 0 and delay:
            await asyncio.sleep(delay)
        results.append(await sweep_donation(ledger, signer, donation))

    processed = sum(1 for r in results if r["success"])
    failed = len(results) - processed
    unconfirmed = sum(1 for r in results if r.get("status") == "unconfirmed")
    ledger.notify_admin(
        "donation_processed",
        "Donations Processed On-chain",
        f"Successfully processed {processed}/{len(donations)} donations to {DONATION_WALLET_ADDRESS}",
        {"results": results, "total_amount": total_amount},
        priority="high" if failed else "low",
    )
    return {
        "success": True,
        "processed": processed,
        "failed": failed,
        "unconfirmed": unconfirmed,
        "total_amount": total_amount,
        "donation_wallet": DONATION_WALLET_ADDRESS,
        "results": results,
    }
