import asyncio
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from fastapi import HTTPException
from web3 import Web3
from web3.exceptions import TransactionNotFound
from web3.types import TxReceipt

from funplanet.config.settings import (
    BSC_RPC_URLS,
    CAMLY_TOKEN_ADDRESS,
    RECEIPT_TIMEOUT_SECONDS,
)
from funplanet.utils.errors import ChainError

logger = logging.getLogger(__name__)

ERC20_ABI = [
    {
        "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "symbol",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"}
        ],
        "name": "transfer",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]

DEFAULT_TRANSFER_GAS = 100000

# Substrings checked against lowercased provider error messages.
_GAS_MARKERS = ("insufficient funds", "gas required exceeds")
_POOL_MARKERS = ("exceeds balance", "insufficient balance")
_REVERT_MARKERS = ("revert",)

CHAIN_ERROR_STATUS = {
    "insufficient_gas": 400,
    "insufficient_pool": 400,
    "reverted": 500,
    "timeout": 504,
    "unknown": 500,
}

CHAIN_ERROR_MESSAGES = {
    "insufficient_gas": "Insufficient BNB for gas fees",
    "insufficient_pool": "Reward pool insufficient",
    "reverted": "Transaction reverted",
    "timeout": "Transaction not confirmed in time",
    "unknown": "Transaction failed",
}


def classify_chain_error(error: Union[Exception, str]) -> str:
    """Map a provider error onto a coarse kind used for status codes."""
    if isinstance(error, ChainError):
        return error.kind
    message = str(error).lower()
    if any(marker in message for marker in _GAS_MARKERS):
        return "insufficient_gas"
    if any(marker in message for marker in _POOL_MARKERS):
        return "insufficient_pool"
    if any(marker in message for marker in _REVERT_MARKERS):
        return "reverted"
    return "unknown"


async def get_web3_instance(rpc_urls: Optional[List[str]] = None) -> Web3:
    """Connect to the first reachable BSC endpoint.

    Falls back across the configured RPC list. Only connection is retried here;
    transactions sent through the returned instance are never resubmitted.
    """
    urls = rpc_urls or BSC_RPC_URLS
    for rpc_url in urls:
        try:
            w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 10}))
            if w3.is_connected():
                logger.debug(f"Connected to BSC via {rpc_url}")
                return w3
            logger.warning(f"⚠️ RPC {rpc_url} not reachable, trying next")
        except Exception as e:
            logger.warning(f"⚠️ RPC {rpc_url} failed: {str(e)}")
    raise HTTPException(status_code=502, detail="Unable to connect to BSC RPC")


def check_sufficient_balance(w3: Web3, address: str, min_balance: float) -> Tuple[bool, str]:
    """Ensure an account holds at least `min_balance` BNB for gas."""
    balance = w3.eth.get_balance(Web3.to_checksum_address(address))
    min_balance_wei = w3.to_wei(min_balance, 'ether')
    if balance < min_balance_wei:
        balance_formatted = w3.from_wei(balance, 'ether')
        return False, (
            f"Insufficient funds: balance {balance_formatted} BNB, "
            f"minimum required ~{min_balance} BNB"
        )
    return True, ""


def build_transaction_with_standard_gas(w3: Web3, contract_function, from_address: str, nonce: int) -> dict:
    """Build a transaction at the network gas price with a 10% estimate buffer."""
    gas_price = w3.eth.gas_price
    tx = contract_function.build_transaction({
        'from': from_address,
        'chainId': w3.eth.chain_id,
        'nonce': nonce,
        'gasPrice': gas_price,
    })
    try:
        tx['gas'] = int(w3.eth.estimate_gas(tx) * 1.1)
    except Exception as e:
        # Estimation reverts surface again on send; keep a fixed limit here.
        logger.warning(f"⚠️ Gas estimation failed: {str(e)}, using default")
        tx['gas'] = DEFAULT_TRANSFER_GAS
    logger.info(f"⛽ {tx['gas']} gas @ {gas_price} wei")
    return tx


async def wait_for_transaction_receipt(w3: Web3, tx_hash: str, timeout: int = RECEIPT_TIMEOUT_SECONDS) -> TxReceipt:
    loop = asyncio.get_event_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        try:
            return w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            await asyncio.sleep(2)
    raise ChainError("timeout", f"Transaction {tx_hash} not mined within {timeout} seconds")


def parent_approval_message(child_id: str, amount: float, wallet_address: str) -> str:
    """Canonical text a parent signs (EIP-191) to approve a child's claim."""
    amount_text = int(amount) if float(amount).is_integer() else amount
    return (
        f"FUN Planet parent approval: child {child_id} may claim "
        f"{amount_text} CAMLY to {wallet_address.lower()}"
    )


def recover_message_signer(message: str, signature: str) -> Optional[str]:
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        logger.warning(f"⚠️ Could not recover signer: {str(e)}")
        return None


def claim_message_hash(wallet_address: str, amount_wei: int, nonce: bytes, chain_id: int, contract_address: str) -> bytes:
    """keccak256(abi.encodePacked(wallet, amountWei, nonce, chainId, contract))"""
    return bytes(Web3.solidity_keccak(
        ["address", "uint256", "bytes32", "uint256", "address"],
        [
            Web3.to_checksum_address(wallet_address),
            amount_wei,
            nonce,
            chain_id,
            Web3.to_checksum_address(contract_address),
        ],
    ))


class KeySigner:
    """Holds one server-side private key and signs with it."""

    def __init__(self, private_key: str):
        self.account: LocalAccount = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self.account.address

    def sign(self, message_hash: bytes) -> str:
        signed = self.account.sign_message(encode_defunct(primitive=message_hash))
        return Web3.to_hex(signed.signature)


class TokenSigner(KeySigner):
    """ERC20 transfers from the reward wallet.

    Submissions for one key address are serialised in-process: a lock per
    address guards nonce selection and broadcast, and the next nonce is
    tracked locally so back-to-back transfers never reuse one.
    """

    _locks: Dict[str, asyncio.Lock] = {}
    _next_nonce: Dict[str, int] = {}

    def __init__(self, w3: Web3, private_key: str, token_address: str = CAMLY_TOKEN_ADDRESS):
        super().__init__(private_key)
        self.w3 = w3
        self.token = w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
        self._decimals: Optional[int] = None

    @property
    def decimals(self) -> int:
        if self._decimals is None:
            self._decimals = self.token.functions.decimals().call()
        return self._decimals

    def to_base_units(self, amount: float) -> int:
        return int(Decimal(str(amount)) * (10 ** self.decimals))

    def from_base_units(self, raw: int) -> float:
        return float(Decimal(raw) / (10 ** self.decimals))

    def token_balance(self, address: Optional[str] = None) -> float:
        owner = Web3.to_checksum_address(address or self.address)
        return self.from_base_units(self.token.functions.balanceOf(owner).call())

    def native_balance(self, address: Optional[str] = None) -> float:
        owner = Web3.to_checksum_address(address or self.address)
        return float(self.w3.from_wei(self.w3.eth.get_balance(owner), 'ether'))

    def has_gas(self, min_balance: float) -> Tuple[bool, str]:
        return check_sufficient_balance(self.w3, self.address, min_balance)

    def _lock(self) -> asyncio.Lock:
        return self._locks.setdefault(self.address, asyncio.Lock())

    async def submit_transfer(self, to_address: str, amount: float) -> str:
        """Sign and broadcast a token transfer; returns the tx hash without waiting."""
        recipient = Web3.to_checksum_address(to_address)
        amount_units = self.to_base_units(amount)
        async with self._lock():
            pending = self.w3.eth.get_transaction_count(self.address, 'pending')
            nonce = max(self._next_nonce.get(self.address, 0), pending)
            tx = build_transaction_with_standard_gas(
                self.w3,
                self.token.functions.transfer(recipient, amount_units),
                self.address,
                nonce,
            )
            signed_tx = self.account.sign_transaction(tx)
            try:
                tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
            except Exception:
                self._next_nonce.pop(self.address, None)
                raise
            self._next_nonce[self.address] = nonce + 1
        tx_hex = Web3.to_hex(tx_hash)
        logger.info(f"🔄 Sent {amount} CAMLY to {recipient}: {tx_hex} (nonce {nonce})")
        return tx_hex

    async def confirm(self, tx_hash: str, timeout: int = RECEIPT_TIMEOUT_SECONDS) -> TxReceipt:
        receipt = await wait_for_transaction_receipt(self.w3, tx_hash, timeout)
        if receipt.get('status') != 1:
            raise ChainError("reverted", f"Transaction {tx_hash} reverted")
        return receipt

    def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        try:
            return self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    def transaction_known(self, tx_hash: str) -> bool:
        """Whether the node still knows the transaction (mined or in mempool)."""
        try:
            self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return False
        return True
