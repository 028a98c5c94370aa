"""
Shared fixtures: in-memory stand-ins for the Supabase ledger and the reward
signer, wired into the FastAPI app through dependency overrides.
"""
import itertools
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from funplanet.main import app
from funplanet.services.ledger import start_of_day, utc_now
from funplanet.utils import dependencies
from funplanet.utils.auth import get_current_user
from funplanet.utils.chain import KeySigner, TokenSigner

USER_ID = "user-1"
WALLET = "0x1111111111111111111111111111111111111111"
CONTRACT = "0x2222222222222222222222222222222222222222"
CLAIM_SIGNER_KEY = "0x" + "11" * 32
PARENT_KEY = "0x" + "22" * 32


class FakeLedger:
    """Dictionary-backed RewardLedger with the same method surface."""

    def __init__(self):
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.pending: Dict[str, float] = {}
        self.claims: List[Dict[str, Any]] = []
        self.daily_logs: List[Dict[str, Any]] = []
        self.transactions: List[Dict[str, Any]] = []
        self.credits: List[Dict[str, Any]] = []
        self.parent_links: Dict[str, Dict[str, Any]] = {}
        self.admins = set()
        self.completed_games = set()
        self.uploaded_games: Dict[str, Dict[str, Any]] = {}
        self.donations: Dict[str, Dict[str, Any]] = {}
        self.withdrawals: Dict[str, Dict[str, Any]] = {}
        self.admin_notifications: List[Dict[str, Any]] = []
        self.user_notifications: List[Dict[str, Any]] = []
        self.ai_reviews: Dict[str, Dict[str, Any]] = {}
        self.fail_credit = False
        self.failing_donation_writes = set()
        self.ip_result: Optional[Dict[str, Any]] = None
        self.ip_error: Optional[Exception] = None

    # profiles and balances
    def get_profile(self, user_id):
        return self.profiles.get(user_id)

    def bind_wallet(self, user_id, wallet_address):
        self.profiles[user_id]["wallet_address"] = wallet_address.lower()

    def get_pending_balance(self, user_id):
        return self.pending.get(user_id, 0.0)

    def add_pending_reward(self, user_id, amount, source):
        if self.fail_credit:
            raise Exception("credit failed")
        self.pending[user_id] = self.pending.get(user_id, 0.0) + amount
        self.credits.append({"user_id": user_id, "amount": amount, "source": source})

    def claim_from_pending(self, user_id, amount):
        balance = self.pending.get(user_id, 0.0)
        if balance < amount:
            return {"success": False, "new_pending": balance, "error": "Insufficient pending balance"}
        self.pending[user_id] = balance - amount
        return {"success": True, "new_pending": self.pending[user_id], "error": None}

    def record_transaction(self, user_id, amount, transaction_type, description):
        self.transactions.append({"user_id": user_id, "amount": amount, "transaction_type": transaction_type})

    # claims
    def find_claims(self, claim_type, user_id=None, wallet_address=None, game_id=None, since=None):
        rows = [c for c in self.claims if c["claim_type"] == claim_type]
        if user_id:
            rows = [c for c in rows if c["user_id"] == user_id]
        if wallet_address:
            rows = [c for c in rows if c.get("wallet_address") == wallet_address.lower()]
        if game_id:
            rows = [c for c in rows if c.get("game_id") == game_id]
        if since:
            rows = [c for c in rows if datetime.fromisoformat(c["created_at"]) >= since]
        return [dict(c) for c in rows]

    def insert_claim(self, record):
        row = {"id": str(uuid.uuid4()), "created_at": utc_now().isoformat(), **record}
        if row.get("wallet_address"):
            row["wallet_address"] = row["wallet_address"].lower()
        self.claims.append(row)
        return dict(row)

    def update_claim(self, claim_id, fields):
        for claim in self.claims:
            if claim["id"] == claim_id:
                claim.update(fields)

    def delete_claim(self, claim_id):
        self.claims = [c for c in self.claims if c["id"] != claim_id]

    def list_stale_claims(self, older_than):
        return [
            dict(c) for c in self.claims
            if c["status"] == "pending" and datetime.fromisoformat(c["created_at"]) < older_than
        ]

    # daily cap
    def daily_claimed(self, user_id, day_start=None):
        since = day_start or start_of_day()
        return float(sum(
            log["amount_claimed"] for log in self.daily_logs
            if log["user_id"] == user_id and log["created_at"] >= since
        ))

    def log_daily_claim(self, user_id, amount, tx_hash):
        self.daily_logs.append({"user_id": user_id, "amount_claimed": amount, "tx_hash": tx_hash, "created_at": utc_now()})

    # accounts and roles
    def get_parent_link(self, child_id):
        return self.parent_links.get(child_id)

    def has_role(self, user_id, role):
        return role == "admin" and user_id in self.admins

    def check_ip_eligibility(self, ip_address, max_accounts):
        if self.ip_error:
            raise self.ip_error
        return self.ip_result or {}

    # games
    def has_completed_game(self, user_id):
        return user_id in self.completed_games

    def get_uploaded_game(self, game_id):
        return self.uploaded_games.get(game_id)

    def reject_uploaded_game(self, game_id, note):
        self.uploaded_games[game_id].update({"status": "rejected", "rejection_note": note})

    def upsert_ai_review(self, record):
        self.ai_reviews[record["game_id"]] = record
        return record

    def get_game_progress(self, user_id, limit=10):
        return []

    def get_recent_plays(self, user_id, limit=20):
        return []

    def list_active_games(self):
        return []

    # donations and withdrawals
    def get_donation(self, donation_id):
        return self.donations.get(donation_id)

    def list_offchain_donations(self):
        return [d for d in self.donations.values() if not d.get("is_onchain") and not d.get("tx_hash")]

    def set_donation_tx_hash(self, donation_id, tx_hash):
        self.donations[donation_id]["tx_hash"] = tx_hash

    def mark_donation_onchain(self, donation_id, tx_hash):
        if donation_id in self.failing_donation_writes:
            raise Exception("db write failed")
        self.donations[donation_id].update({"is_onchain": True, "tx_hash": tx_hash, "donation_type": "onchain_processed"})

    def get_withdrawal(self, withdrawal_id):
        return self.withdrawals.get(withdrawal_id)

    def update_withdrawal(self, withdrawal_id, fields):
        self.withdrawals[withdrawal_id].update(fields)

    # notifications
    def notify_admin(self, notification_type, title, message, data, priority="normal"):
        self.admin_notifications.append({"notification_type": notification_type, "priority": priority, "data": data})

    def notify_user(self, user_id, notification_type, title, message, data):
        self.user_notifications.append({"user_id": user_id, "notification_type": notification_type, "data": data})


class FakeTokenSigner:
    """Reward-wallet signer that records transfers instead of sending them."""

    address = "0x3333333333333333333333333333333333333333"

    def __init__(self, pool: float = 10_000_000, bnb: float = 1.0):
        self.pool = pool
        self.bnb = bnb
        self.transfers: List[Dict[str, Any]] = []
        self.submit_error: Optional[Exception] = None
        self.confirm_error: Optional[Exception] = None
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.known = set()
        self._hashes = itertools.count(1)

    def token_balance(self, address=None):
        return self.pool

    def native_balance(self, address=None):
        return self.bnb

    def has_gas(self, min_balance):
        if self.bnb < min_balance:
            return False, f"Insufficient funds: balance {self.bnb} BNB"
        return True, ""

    async def submit_transfer(self, to_address, amount):
        if self.submit_error:
            raise self.submit_error
        tx_hash = "0x" + format(next(self._hashes), "064x")
        self.transfers.append({"to": to_address, "amount": amount, "tx_hash": tx_hash})
        self.pool -= amount
        return tx_hash

    async def confirm(self, tx_hash, timeout=300):
        if self.confirm_error:
            raise self.confirm_error
        return {"status": 1, "blockNumber": 4242, "transactionHash": tx_hash}

    def get_receipt(self, tx_hash):
        return self.receipts.get(tx_hash)

    def transaction_known(self, tx_hash):
        return tx_hash in self.known


class FakeGateway:
    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.response: Dict[str, Any] = {}
        self.image_url: Optional[str] = None
        self.chunks: List[bytes] = [b"data: hello\n\n", b"data: [DONE]\n\n"]
        self.error: Optional[Exception] = None

    def complete(self, messages, model=None, **options):
        self.calls.append({"messages": messages, "model": model, **options})
        if self.error:
            raise self.error
        return self.response

    def stream_chat(self, messages, model=None, max_tokens=1000):
        self.calls.append({"messages": messages, "stream": True})
        return iter(self.chunks)

    def generate_image(self, prompt):
        return self.image_url


@pytest.fixture
def ledger():
    fake = FakeLedger()
    fake.profiles[USER_ID] = {"id": USER_ID, "wallet_address": WALLET}
    return fake


@pytest.fixture
def signer():
    return FakeTokenSigner()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def current_user():
    return {"id": USER_ID, "email": "kid@funplanet.test"}


@pytest.fixture
def client(ledger, signer, gateway, current_user):
    async def signer_factory():
        return signer

    app.dependency_overrides[get_current_user] = lambda: current_user
    app.dependency_overrides[dependencies.get_ledger] = lambda: ledger
    app.dependency_overrides[dependencies.get_reward_signer_factory] = lambda: signer_factory
    app.dependency_overrides[dependencies.get_claim_signer] = lambda: KeySigner(CLAIM_SIGNER_KEY)
    app.dependency_overrides[dependencies.get_claim_contract_address] = lambda: CONTRACT
    app.dependency_overrides[dependencies.get_ai_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_nonce_tracking():
    TokenSigner._locks.clear()
    TokenSigner._next_nonce.clear()
    yield
    TokenSigner._locks.clear()
    TokenSigner._next_nonce.clear()

