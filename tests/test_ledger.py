"""
RewardLedger against a mocked supabase client: RPC payloads and result shapes.
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from funplanet.services.ledger import RewardLedger, start_of_day


@pytest.fixture
def supabase():
    return MagicMock()


@pytest.fixture
def reward_ledger(supabase):
    return RewardLedger(supabase)


class TestPendingBalanceRpcs:
    def test_claim_from_pending_list_result(self, reward_ledger, supabase):
        supabase.rpc.return_value.execute.return_value.data = [{"success": True, "new_pending": "150.5"}]

        result = reward_ledger.claim_from_pending("user-1", 100)

        supabase.rpc.assert_called_once_with("claim_from_pending", {"p_user_id": "user-1", "p_amount": 100})
        assert result == {"success": True, "new_pending": 150.5, "error": None}

    def test_claim_from_pending_failure(self, reward_ledger, supabase):
        supabase.rpc.return_value.execute.return_value.data = {"success": False, "error": "Insufficient"}

        result = reward_ledger.claim_from_pending("user-1", 100)

        assert result["success"] is False
        assert result["error"] == "Insufficient"

    def test_empty_rpc_result_is_a_failure(self, reward_ledger, supabase):
        supabase.rpc.return_value.execute.return_value.data = []

        assert reward_ledger.claim_from_pending("user-1", 1)["success"] is False

    def test_credit_uses_source(self, reward_ledger, supabase):
        reward_ledger.add_pending_reward("user-1", 50000, "first_wallet")

        supabase.rpc.assert_called_once_with(
            "add_user_pending_reward", {"p_user_id": "user-1", "p_amount": 50000, "p_source": "first_wallet"},
        )

    def test_missing_rewards_row_means_zero(self, reward_ledger, supabase):
        supabase.table.return_value.select.return_value.eq.return_value.execute.return_value.data = []

        assert reward_ledger.get_pending_balance("user-1") == 0.0


class TestClaims:
    def test_insert_lowercases_wallet(self, reward_ledger, supabase):
        supabase.table.return_value.insert.return_value.execute.return_value.data = [{"id": "c-1"}]

        reward_ledger.insert_claim({"wallet_address": "0xABCDEF", "amount": 1})

        supabase.table.assert_called_with("camly_claims")
        supabase.table.return_value.insert.assert_called_once_with({"wallet_address": "0xabcdef", "amount": 1})

    def test_insert_without_row_raises(self, reward_ledger, supabase):
        supabase.table.return_value.insert.return_value.execute.return_value.data = []

        with pytest.raises(Exception):
            reward_ledger.insert_claim({"amount": 1})

    def test_daily_total_sums_rows(self, reward_ledger, supabase):
        query = supabase.table.return_value.select.return_value.eq.return_value.gte.return_value
        query.execute.return_value.data = [{"amount_claimed": 100000}, {"amount_claimed": "50000"}]

        assert reward_ledger.daily_claimed("user-1") == 150000.0


def test_start_of_day_is_utc_midnight():
    moment = datetime(2026, 3, 4, 17, 45, 12, tzinfo=timezone.utc)

    assert start_of_day(moment) == datetime(2026, 3, 4, tzinfo=timezone.utc)


def test_admin_role_rpc(reward_ledger, supabase):
    supabase.rpc.return_value.execute.return_value.data = True

    assert reward_ledger.has_role("user-1", "admin") is True
    supabase.rpc.assert_called_once_with("has_role", {"_user_id": "user-1", "_role": "admin"})


class TestDonations:
    def test_sweep_skips_submitted_transfers(self, reward_ledger, supabase):
        query = supabase.table.return_value.select.return_value.eq.return_value.is_.return_value
        query.order.return_value.execute.return_value.data = [{"id": "d-1"}]

        assert reward_ledger.list_offchain_donations() == [{"id": "d-1"}]
        supabase.table.return_value.select.return_value.eq.assert_called_once_with("is_onchain", False)
        supabase.table.return_value.select.return_value.eq.return_value.is_.assert_called_once_with("tx_hash", "null")

    def test_pending_hash_written_alone(self, reward_ledger, supabase):
        reward_ledger.set_donation_tx_hash("d-1", "0xabc")

        supabase.table.assert_called_with("platform_donations")
        supabase.table.return_value.update.assert_called_once_with({"tx_hash": "0xabc"})
