import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(moment: Optional[datetime] = None) -> datetime:
    moment = moment or utc_now()
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class RewardLedger:
    """Reads and writes the off-chain reward ledger held in Supabase.

    Every table and RPC the service touches goes through this class so that
    routes and settlement logic never build queries themselves.
    """

    def __init__(self, client: Client):
        self.client = client

    # --- profiles and balances -------------------------------------------

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        response = self.client.table("profiles").select("id, username, wallet_address").eq("id", user_id).execute()
        return response.data[0] if response.data else None

    def bind_wallet(self, user_id: str, wallet_address: str) -> None:
        wallet = wallet_address.lower()
        self.client.table("profiles").update({"wallet_address": wallet}).eq("id", user_id).execute()
        self.client.table("user_rewards").update({"wallet_address": wallet}).eq("user_id", user_id).execute()
        logger.info(f"🔗 Bound wallet {wallet} to user {user_id}")

    def get_pending_balance(self, user_id: str) -> float:
        response = self.client.table("user_rewards").select("pending_amount").eq("user_id", user_id).execute()
        if not response.data:
            return 0.0
        return float(response.data[0].get("pending_amount") or 0)

    def add_pending_reward(self, user_id: str, amount: float, source: str) -> Any:
        response = self.client.rpc("add_user_pending_reward", {
            "p_user_id": user_id,
            "p_amount": amount,
            "p_source": source,
        }).execute()
        logger.info(f"💰 Credited {amount} CAMLY to {user_id} ({source})")
        return response.data

    def claim_from_pending(self, user_id: str, amount: float) -> Dict[str, Any]:
        """Atomically deduct `amount` from the pending balance.

        Returns ``{"success": bool, "new_pending": float, "error": str | None}``.
        """
        response = self.client.rpc("claim_from_pending", {
            "p_user_id": user_id,
            "p_amount": amount,
        }).execute()
        data = response.data
        if isinstance(data, list):
            data = data[0] if data else {}
        data = data or {}
        return {
            "success": bool(data.get("success")),
            "new_pending": float(data.get("new_pending") or 0),
            "error": data.get("error"),
        }

    def record_transaction(self, user_id: str, amount: float, transaction_type: str, description: str) -> None:
        self.client.table("camly_coin_transactions").insert({
            "user_id": user_id,
            "amount": amount,
            "transaction_type": transaction_type,
            "description": description,
        }).execute()

    # --- claims -----------------------------------------------------------

    def find_claims(
        self,
        claim_type: str,
        user_id: Optional[str] = None,
        wallet_address: Optional[str] = None,
        game_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        query = self.client.table("camly_claims").select("*").eq("claim_type", claim_type)
        if user_id:
            query = query.eq("user_id", user_id)
        if wallet_address:
            query = query.eq("wallet_address", wallet_address.lower())
        if game_id:
            query = query.eq("game_id", game_id)
        if since:
            query = query.gte("created_at", since.isoformat())
        return query.order("created_at", desc=True).execute().data or []

    def insert_claim(self, record: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(record)
        if record.get("wallet_address"):
            record["wallet_address"] = record["wallet_address"].lower()
        response = self.client.table("camly_claims").insert(record).execute()
        if not response.data:
            raise Exception("Failed to insert claim record")
        return response.data[0]

    def update_claim(self, claim_id: str, fields: Dict[str, Any]) -> None:
        self.client.table("camly_claims").update(fields).eq("id", claim_id).execute()

    def delete_claim(self, claim_id: str) -> None:
        self.client.table("camly_claims").delete().eq("id", claim_id).execute()

    def list_stale_claims(self, older_than: datetime) -> List[Dict[str, Any]]:
        response = (
            self.client.table("camly_claims")
            .select("*")
            .eq("status", "pending")
            .lt("created_at", older_than.isoformat())
            .order("created_at")
            .execute()
        )
        return response.data or []

    # --- daily cap --------------------------------------------------------

    def daily_claimed(self, user_id: str, day_start: Optional[datetime] = None) -> float:
        since = day_start or start_of_day()
        response = (
            self.client.table("daily_claim_logs")
            .select("amount_claimed")
            .eq("user_id", user_id)
            .gte("created_at", since.isoformat())
            .execute()
        )
        return float(sum(float(row.get("amount_claimed") or 0) for row in response.data or []))

    def log_daily_claim(self, user_id: str, amount: float, tx_hash: str) -> None:
        self.client.table("daily_claim_logs").insert({
            "user_id": user_id,
            "amount_claimed": amount,
            "tx_hash": tx_hash,
        }).execute()

    # --- accounts and roles -----------------------------------------------

    def get_parent_link(self, child_id: str) -> Optional[Dict[str, Any]]:
        response = (
            self.client.table("parent_child_links")
            .select("parent_id, child_id, status")
            .eq("child_id", child_id)
            .eq("status", "approved")
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def has_role(self, user_id: str, role: str) -> bool:
        response = self.client.rpc("has_role", {"_user_id": user_id, "_role": role}).execute()
        return bool(response.data)

    def check_ip_eligibility(self, ip_address: str, max_accounts: int) -> Dict[str, Any]:
        response = self.client.rpc("check_ip_eligibility", {
            "p_ip_address": ip_address,
            "p_max_accounts": max_accounts,
        }).execute()
        data = response.data
        if isinstance(data, list):
            data = data[0] if data else {}
        return data or {}

    # --- games ------------------------------------------------------------

    def has_completed_game(self, user_id: str) -> bool:
        response = (
            self.client.table("game_progress")
            .select("id")
            .eq("user_id", user_id)
            .gte("highest_level_completed", 1)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    def get_uploaded_game(self, game_id: str) -> Optional[Dict[str, Any]]:
        response = self.client.table("uploaded_games").select("id, user_id, title, status").eq("id", game_id).execute()
        return response.data[0] if response.data else None

    def reject_uploaded_game(self, game_id: str, note: str) -> None:
        self.client.table("uploaded_games").update({
            "status": "rejected",
            "rejection_note": note,
        }).eq("id", game_id).execute()

    def upsert_ai_review(self, record: Dict[str, Any]) -> Dict[str, Any]:
        response = self.client.table("game_ai_reviews").upsert(record, on_conflict="game_id").execute()
        return response.data[0] if response.data else record

    def get_game_progress(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        response = (
            self.client.table("game_progress")
            .select("game_id, highest_level_completed, total_stars")
            .eq("user_id", user_id)
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
        )
        return response.data or []

    def get_recent_plays(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        response = (
            self.client.table("game_plays")
            .select("game_id")
            .eq("user_id", user_id)
            .order("played_at", desc=True)
            .limit(limit)
            .execute()
        )
        return response.data or []

    def list_active_games(self) -> List[Dict[str, Any]]:
        response = self.client.table("games").select("id, title, genre, difficulty, description").eq("is_active", True).execute()
        return response.data or []

    # --- donations and withdrawals ----------------------------------------

    def get_donation(self, donation_id: str) -> Optional[Dict[str, Any]]:
        response = self.client.table("platform_donations").select("*").eq("id", donation_id).execute()
        return response.data[0] if response.data else None

    def list_offchain_donations(self) -> List[Dict[str, Any]]:
        response = (
            self.client.table("platform_donations")
            .select("*")
            .eq("is_onchain", False)
            .is_("tx_hash", "null")
            .order("created_at")
            .execute()
        )
        return response.data or []

    def set_donation_tx_hash(self, donation_id: str, tx_hash: Optional[str]) -> None:
        """Store or clear the hash of a submitted, unconfirmed donation transfer."""
        self.client.table("platform_donations").update({"tx_hash": tx_hash}).eq("id", donation_id).execute()

    def mark_donation_onchain(self, donation_id: str, tx_hash: str) -> None:
        self.client.table("platform_donations").update({
            "is_onchain": True,
            "tx_hash": tx_hash,
            "donation_type": "onchain_processed",
        }).eq("id", donation_id).execute()

    def get_withdrawal(self, withdrawal_id: str) -> Optional[Dict[str, Any]]:
        response = self.client.table("withdrawal_requests").select("*").eq("id", withdrawal_id).execute()
        return response.data[0] if response.data else None

    def update_withdrawal(self, withdrawal_id: str, fields: Dict[str, Any]) -> None:
        self.client.table("withdrawal_requests").update(fields).eq("id", withdrawal_id).execute()

    # --- notifications ----------------------------------------------------

    def notify_admin(self, notification_type: str, title: str, message: str, data: Dict[str, Any], priority: str = "normal") -> None:
        self.client.table("admin_realtime_notifications").insert({
            "notification_type": notification_type,
            "title": title,
            "message": message,
            "priority": priority,
            "data": data,
        }).execute()

    def notify_user(self, user_id: str, notification_type: str, title: str, message: str, data: Dict[str, Any]) -> None:
        self.client.table("user_notifications").insert({
            "user_id": user_id,
            "notification_type": notification_type,
            "title": title,
            "message": message,
            "data": data,
        }).execute()
