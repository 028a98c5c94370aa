from typing import Dict

from fastapi import APIRouter, Depends

from funplanet.models.schemas import DonationProcessRequest, WithdrawalProcessRequest
from funplanet.services.claims import SignerFactory
from funplanet.services.donations import process_donations
from funplanet.services.ledger import RewardLedger
from funplanet.services.withdrawals import process_approved_withdrawal
from funplanet.utils.auth import require_admin
from funplanet.utils.dependencies import get_ledger, get_reward_signer_factory

router = APIRouter()


@router.post("/process-donation-onchain")
async def process_donation_onchain(
    body: DonationProcessRequest,
    admin: Dict = Depends(require_admin),
    ledger: RewardLedger = Depends(get_ledger),
    signer_factory: SignerFactory = Depends(get_reward_signer_factory),
):
    return await process_donations(ledger, signer_factory, body.donation_id, body.process_all)


@router.post("/process-approved-withdrawal")
async def approved_withdrawal(
    body: WithdrawalProcessRequest,
    admin: Dict = Depends(require_admin),
    ledger: RewardLedger = Depends(get_ledger),
    signer_factory: SignerFactory = Depends(get_reward_signer_factory),
):
    return await process_approved_withdrawal(ledger, signer_factory, body.withdrawal_id)
