"""
Server-signed claims redeemed by the user on the rewards contract.
"""
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from funplanet.utils.chain import KeySigner, claim_message_hash

from conftest import CLAIM_SIGNER_KEY, CONTRACT, USER_ID, WALLET


class TestSignRewardsClaim:
    """The signature must verify on-chain against the signer key."""

    def test_signature_recovers_to_signer(self, client, ledger, signer):
        ledger.pending[USER_ID] = 1000

        response = client.post("/sign-rewards-claim", json={"wallet_address": WALLET, "amount": 250})

        assert response.status_code == 200
        body = response.json()
        assert body["amount_wei"] == str(250 * 10 ** 18)
        assert body["chain_id"] == 56
        assert body["contract_address"] == Web3.to_checksum_address(CONTRACT)
        message_hash = claim_message_hash(
            WALLET, int(body["amount_wei"]), bytes(Web3.to_bytes(hexstr=body["nonce"])), 56, CONTRACT,
        )
        recovered = Account.recover_message(encode_defunct(primitive=message_hash), signature=body["signature"])
        assert recovered == KeySigner(CLAIM_SIGNER_KEY).address
        # signing sends nothing
        assert signer.transfers == []

    def test_balance_deducted_and_claim_recorded(self, client, ledger):
        ledger.pending[USER_ID] = 1000

        body = client.post("/sign-rewards-claim", json={"wallet_address": WALLET, "amount": 250}).json()

        assert ledger.pending[USER_ID] == 750
        claim = ledger.claims[0]
        assert claim["settlement_stage"] == "signed"
        assert claim["tx_hash"] == body["nonce"]
        assert ledger.daily_logs[0]["amount_claimed"] == 250
        assert ledger.transactions[0]["transaction_type"] == "withdrawal_pending"

    def test_each_signature_has_a_fresh_nonce(self, client, ledger):
        ledger.pending[USER_ID] = 1000

        first = client.post("/sign-rewards-claim", json={"wallet_address": WALLET, "amount": 100}).json()
        second = client.post("/sign-rewards-claim", json={"wallet_address": WALLET, "amount": 100}).json()

        assert first["nonce"] != second["nonce"]
        assert first["signature"] != second["signature"]

    def test_insufficient_balance(self, client, ledger):
        ledger.pending[USER_ID] = 10

        response = client.post("/sign-rewards-claim", json={"wallet_address": WALLET, "amount": 250})

        assert response.status_code == 400
        assert response.json()["error"] == "Insufficient balance"
        assert ledger.claims == []

    def test_daily_cap_applies(self, client, ledger):
        ledger.pending[USER_ID] = 500000

        response = client.post("/sign-rewards-claim", json={"wallet_address": WALLET, "amount": 200001})

        assert response.status_code == 400
        assert response.json()["error"] == "Daily claim limit exceeded"
        assert ledger.pending[USER_ID] == 500000

    def test_unbound_profile_is_refused(self, client, ledger):
        ledger.profiles[USER_ID]["wallet_address"] = None
        ledger.pending[USER_ID] = 1000

        response = client.post("/sign-rewards-claim", json={"wallet_address": WALLET, "amount": 250})

        assert response.status_code == 403
        assert ledger.profiles[USER_ID]["wallet_address"] is None
        assert ledger.pending[USER_ID] == 1000
        assert ledger.claims == []
