import os
from functools import lru_cache
from dotenv import load_dotenv
from supabase import create_client, Client

# Load environment variables from .env file
load_dotenv()


class MissingConfigError(RuntimeError):
    """Raised when a required environment variable is not set."""


def get_env_or_raise(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise MissingConfigError(f"{name} is not configured")
    return value


def _split_csv(raw: str) -> list:
    return [item.strip() for item in raw.split(",") if item.strip()]


# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ALLOWED_ORIGINS = _split_csv(os.getenv("ALLOWED_ORIGINS", "*"))

# Supabase (service role key is read lazily, see get_supabase_admin)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")

# Chain
BSC_CHAIN_ID = int(os.getenv("BSC_CHAIN_ID", "56"))
BSC_RPC_URLS = _split_csv(os.getenv(
    "BSC_RPC_URLS",
    "https://bsc-dataseed.binance.org/,"
    "https://bsc-dataseed1.binance.org/,"
    "https://bsc-dataseed2.binance.org/,"
    "https://bsc-dataseed3.binance.org/,"
    "https://bsc-dataseed4.binance.org/,"
    "https://bsc.publicnode.com,"
    "https://binance.llamarpc.com",
))
BSCSCAN_TX_URL = "https://bscscan.com/tx/"
CAMLY_TOKEN_ADDRESS = os.getenv("CAMLY_TOKEN_ADDRESS", "0x0910320181889fefde0bb1ca63962b0a8882e413")
DONATION_WALLET_ADDRESS = os.getenv("DONATION_WALLET_ADDRESS", "0xaBeB558CC6D34e56eaDB53D248872bEd1e7b77be")
MIN_GAS_BNB = float(os.getenv("MIN_GAS_BNB", "0.001"))
DONATION_TX_DELAY_SECONDS = float(os.getenv("DONATION_TX_DELAY_SECONDS", "1"))
RECEIPT_TIMEOUT_SECONDS = int(os.getenv("RECEIPT_TIMEOUT_SECONDS", "300"))
CLAIM_SIGNATURE_DECIMALS = 18

# Rewards
DAILY_LIMIT = int(os.getenv("DAILY_LIMIT", "200000"))
MAX_ACCOUNTS_PER_IP = int(os.getenv("MAX_ACCOUNTS_PER_IP", "3"))

# AI gateway
AI_GATEWAY_URL = os.getenv("AI_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions")
AI_CHAT_MODEL = os.getenv("AI_CHAT_MODEL", "google/gemini-2.5-flash")
AI_IMAGE_MODEL = os.getenv("AI_IMAGE_MODEL", "google/gemini-2.5-flash-image-preview")
AI_REVIEW_MODEL_WITH_IMAGE = os.getenv("AI_REVIEW_MODEL_WITH_IMAGE", "google/gemini-2.5-pro")

# Validate Supabase URL
if SUPABASE_URL and not SUPABASE_URL.startswith("https://"):
    raise ValueError(f"Invalid SUPABASE_URL: {SUPABASE_URL}")


@lru_cache(maxsize=1)
def get_supabase_admin() -> Client:
    """Service-role Supabase client, created on first use."""
    url = get_env_or_raise("SUPABASE_URL")
    key = get_env_or_raise("SUPABASE_SERVICE_ROLE_KEY")
    return create_client(url, key)
