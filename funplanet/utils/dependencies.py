from typing import Awaitable, Callable

from funplanet.config.settings import get_env_or_raise, get_supabase_admin
from funplanet.services.ledger import RewardLedger
from funplanet.utils.ai_gateway import AIGateway
from funplanet.utils.chain import KeySigner, TokenSigner, get_web3_instance
from funplanet.utils.storage import R2Storage


def get_ledger() -> RewardLedger:
    return RewardLedger(get_supabase_admin())


async def build_reward_signer() -> TokenSigner:
    private_key = get_env_or_raise("CAMLY_REWARD_WALLET_PRIVATE_KEY")
    w3 = await get_web3_instance()
    return TokenSigner(w3, private_key)


def get_reward_signer_factory() -> Callable[[], Awaitable[TokenSigner]]:
    """Routes open the chain connection only once validation has passed."""
    return build_reward_signer


def get_claim_signer() -> KeySigner:
    return KeySigner(get_env_or_raise("REWARDS_SIGNER_PRIVATE_KEY"))


def get_claim_contract_address() -> str:
    return get_env_or_raise("REWARDS_CLAIM_CONTRACT_ADDRESS")


def get_ai_gateway() -> AIGateway:
    return AIGateway(get_env_or_raise("LOVABLE_API_KEY"))


def get_r2_storage() -> R2Storage:
    return R2Storage.from_env()
