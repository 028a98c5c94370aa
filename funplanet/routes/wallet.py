import logging
from typing import Dict

from fastapi import APIRouter, Depends, Request

from funplanet.config.settings import MAX_ACCOUNTS_PER_IP
from funplanet.services.claims import SignerFactory
from funplanet.services.ledger import RewardLedger, utc_now
from funplanet.utils.auth import require_admin
from funplanet.utils.dependencies import get_ledger, get_reward_signer_factory

logger = logging.getLogger(__name__)

router = APIRouter()


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    return (
        request.headers.get("cf-connecting-ip")
        or (forwarded.split(",")[0].strip() if forwarded else None)
        or request.headers.get("x-real-ip")
        or "unknown"
    )


@router.get("/check-reward-wallet-balance")
async def check_reward_wallet_balance(
    admin: Dict = Depends(require_admin),
    signer_factory: SignerFactory = Depends(get_reward_signer_factory),
):
    signer = await signer_factory()
    return {
        "success": True,
        "wallet_address": signer.address,
        "camly_balance": round(signer.token_balance()),
        "bnb_balance": signer.native_balance(),
        "checked_at": utc_now().isoformat(),
    }


@router.post("/check-ip-eligibility")
async def check_ip_eligibility(request: Request, ledger: RewardLedger = Depends(get_ledger)):
    ip = client_ip(request)
    try:
        result = ledger.check_ip_eligibility(ip, MAX_ACCOUNTS_PER_IP)
    except Exception as e:
        # Sign-up must not be blocked by a failing check.
        logger.error(f"❌ IP eligibility check failed for {ip}: {str(e)}")
        return {
            "ip": ip,
            "is_eligible": True,
            "reason": "Check failed - allowing signup",
            "existing_accounts": 0,
            "is_blacklisted": False,
        }
    return {
        "ip": ip,
        "is_eligible": result.get("is_eligible", True),
        "reason": result.get("reason", "OK"),
        "existing_accounts": result.get("existing_accounts", 0),
        "is_blacklisted": result.get("is_blacklisted", False),
    }
