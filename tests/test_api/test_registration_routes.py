"""Registration endpoint tests."""

from unittest.mock import AsyncMock

import httpx
import pytest

from truthchain.blockchain.gateway import SubmissionResult
from truthchain.core.hashing import hash_content_hex
from tests.fixtures.chain import API_URL, PRIMARY, TEST_PRIVATE_KEY
from tests.fixtures.db import WALLET, make_registration

CONTENT = "Registered through the API"
HASH = hash_content_hex(CONTENT)
TX_ID = "0x" + "34" * 32


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_direct(self, test_client, chain, gateway, mocker):
        chain.exists(PRIMARY, False)
        mocker.patch.object(
            gateway, "submit", AsyncMock(return_value=SubmissionResult(True, TX_ID))
        )

        response = await test_client.post(
            "/api/register",
            json={"tweetContent": CONTENT, "privateKey": TEST_PRIVATE_KEY},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["hash"] == HASH
        assert data["txId"] == TX_ID
        assert TEST_PRIVATE_KEY not in response.text

    @pytest.mark.asyncio
    async def test_conflict(self, test_client, chain):
        chain.exists(PRIMARY, True)

        response = await test_client.post(
            "/api/register",
            json={"tweetContent": CONTENT, "privateKey": TEST_PRIVATE_KEY},
        )

        assert response.status_code == 409
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_too_long(self, test_client):
        response = await test_client.post(
            "/api/register",
            json={"tweetContent": "z" * 281, "privateKey": TEST_PRIVATE_KEY},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Content too long"

    @pytest.mark.asyncio
    async def test_bad_key_is_not_echoed(self, test_client, chain):
        chain.exists(PRIMARY, False)
        secret = "f" * 63

        response = await test_client.post(
            "/api/register", json={"tweetContent": CONTENT, "privateKey": secret}
        )

        assert response.status_code == 502
        assert secret not in response.text

    @pytest.mark.asyncio
    async def test_missing_key_is_validation_error(self, test_client):
        response = await test_client.post("/api/register", json={"tweetContent": CONTENT})
        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"


class TestCheckRegistration:
    @pytest.mark.asyncio
    async def test_can_register(self, test_client, chain):
        chain.exists(PRIMARY, False)

        response = await test_client.post(
            "/api/check-registration", json={"tweetContent": CONTENT}
        )

        assert response.json()["exists"] is False
        assert response.json()["data"]["canRegister"] is True


class TestSecureFlow:
    @pytest.mark.asyncio
    async def test_prepare_then_confirm(self, test_client, chain, chain_router, registration_repository):
        chain.exists(PRIMARY, False)

        prepared = await test_client.post(
            "/api/secure/register",
            json={
                "tweetContent": CONTENT,
                "walletAddress": WALLET,
                "bnsName": "alice.btc",
                "source": "extension",
            },
            headers={"User-Agent": "truthchain-extension/1.0"},
        )

        assert prepared.status_code == 200
        call = prepared.json()["data"]["contractCall"]
        assert call["functionArgs"] == [f"0x{HASH}", "tweet"]
        record = registration_repository.records[HASH]
        assert record.source == "extension"
        assert record.user_agent == "truthchain-extension/1.0"

        chain_router.get(f"{API_URL}/extended/v1/tx/{TX_ID}").mock(
            return_value=httpx.Response(200, json={"tx_status": "pending"})
        )
        pending = await test_client.post(
            "/api/secure/confirm-registration", json={"txId": TX_ID, "hash": HASH}
        )
        assert pending.json()["confirmed"] is False
        assert pending.json()["message"] == "Registration is pending confirmation"

        chain.registered(PRIMARY, bns_name="alice.btc")
        confirmed = await test_client.post(
            "/api/secure/confirm-registration",
            json={"txId": TX_ID, "tweetContent": CONTENT},
        )
        assert confirmed.json()["confirmed"] is True
        assert registration_repository.records[HASH].chain_status == "confirmed"

    @pytest.mark.asyncio
    async def test_invalid_source_rejected(self, test_client):
        response = await test_client.post(
            "/api/secure/register",
            json={"tweetContent": CONTENT, "walletAddress": WALLET, "source": "fax"},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_confirm_unknown(self, test_client):
        response = await test_client.post(
            "/api/secure/confirm-registration", json={"txId": TX_ID, "hash": HASH}
        )
        assert response.status_code == 404


class TestLookups:
    @pytest.mark.asyncio
    async def test_registration_by_tx_id(self, test_client, registration_repository):
        registration_repository.add(make_registration(HASH, tx_id=TX_ID))

        response = await test_client.get(f"/api/registration/{TX_ID}")

        assert response.status_code == 200
        assert response.json()["data"]["hash"] == HASH

    @pytest.mark.asyncio
    async def test_registration_by_tx_id_missing(self, test_client):
        response = await test_client.get(f"/api/registration/{TX_ID}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_wallet_registrations(self, test_client, registration_repository):
        registration_repository.add(make_registration(HASH))

        response = await test_client.get(f"/api/registrations/wallet/{WALLET}?limit=10")

        assert response.json()["data"]["total"] == 1
        assert response.json()["data"]["registrations"][0]["hash"] == HASH

    @pytest.mark.asyncio
    async def test_content_without_ipfs(self, test_client, registration_repository):
        registration_repository.add(make_registration(HASH, ipfs_cid="bafkcid"))

        response = await test_client.get(f"/api/content/{HASH}")

        assert response.status_code == 502
        assert response.json()["error"] == "IPFS unavailable"

    @pytest.mark.asyncio
    async def test_global_stats(self, test_client, gateway, registration_repository, mocker):
        registration_repository.add(make_registration(HASH))
        mocker.patch.object(gateway, "stats", AsyncMock(return_value=None))

        response = await test_client.get("/api/stats/global")

        assert response.json()["data"]["totalRegistrations"] == 1
        assert response.json()["data"]["contract"] is None
