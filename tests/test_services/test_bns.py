"""Tests for BNS ownership validation."""

from datetime import timedelta

import httpx
import pytest
import respx

from truthchain.database.models import utcnow
from truthchain.services.bns import (
    BNSClient,
    BNSValidator,
    RegistryUnavailableError,
    classify,
)
from tests.fixtures.db import OTHER_WALLET, WALLET, make_registration

BNS_URL = "https://bns.test"


def names_url(address: str) -> str:
    return f"{BNS_URL}/v1/addresses/stacks/{address}/names"


@pytest.fixture
def bns_router():
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
async def bns_client():
    client = BNSClient(BNS_URL, api_key="hiro-key")
    yield client
    await client.aclose()


@pytest.fixture
def validator(bns_client, session_scope, registration_repository, mocker):
    mocker.patch(
        "truthchain.services.bns.RegistrationRepository",
        return_value=registration_repository,
    )
    return BNSValidator(bns_client, session_scope, batch_size=10, request_delay=0)


class TestClassify:
    def test_valid_when_name_still_owned(self):
        check = classify("alice.btc", ["alice.btc", "other.btc"])
        assert check.status == "valid"
        assert check.current_owner == "alice.btc"

    def test_transferred_when_wallet_owns_other_names(self):
        check = classify("alice.btc", ["bob.btc"])
        assert check.status == "transferred"
        assert check.current_owner == "bob.btc"

    def test_unowned_when_wallet_owns_nothing(self):
        check = classify("alice.btc", [])
        assert check.status == "unowned"
        assert check.current_owner is None


class TestBNSClient:
    @pytest.mark.asyncio
    async def test_fetch_names(self, bns_client, bns_router):
        route = bns_router.get(names_url(WALLET)).mock(
            return_value=httpx.Response(200, json={"names": ["alice.btc"]})
        )

        assert await bns_client.fetch_names(WALLET) == ["alice.btc"]
        assert route.calls.last.request.headers["x-api-key"] == "hiro-key"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 400])
    async def test_client_errors_mean_no_names(self, bns_client, bns_router, status):
        bns_router.get(names_url(WALLET)).mock(return_value=httpx.Response(status))
        assert await bns_client.fetch_names(WALLET) == []

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self, bns_client, bns_router):
        bns_router.get(names_url(WALLET)).mock(return_value=httpx.Response(503))
        with pytest.raises(RegistryUnavailableError):
            await bns_client.fetch_names(WALLET)

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self, bns_client, bns_router):
        bns_router.get(names_url(WALLET)).mock(side_effect=httpx.ReadTimeout)
        with pytest.raises(RegistryUnavailableError):
            await bns_client.fetch_names(WALLET)

    @pytest.mark.asyncio
    async def test_invalid_json_is_unavailable(self, bns_client, bns_router):
        bns_router.get(names_url(WALLET)).mock(
            return_value=httpx.Response(200, text="<html>")
        )
        with pytest.raises(RegistryUnavailableError):
            await bns_client.fetch_names(WALLET)


class TestValidateStale:
    @pytest.mark.asyncio
    async def test_sweep_classifies_stale_bindings(
        self, validator, registration_repository, bns_router
    ):
        fresh = utcnow() - timedelta(minutes=5)
        registration_repository.add(make_registration("01" * 32, bns_name="alice.btc"))
        registration_repository.add(make_registration("02" * 32, bns_name="gone.btc"))
        registration_repository.add(
            make_registration(
                "03" * 32, bns_name="bob.btc", author_wallet=OTHER_WALLET
            )
        )
        registration_repository.add(
            make_registration("04" * 32, bns_name="alice.btc", last_bns_validation=fresh)
        )
        registration_repository.add(make_registration("05" * 32))
        wallet_route = bns_router.get(names_url(WALLET)).mock(
            return_value=httpx.Response(200, json={"names": ["alice.btc"]})
        )
        bns_router.get(names_url(OTHER_WALLET)).mock(
            return_value=httpx.Response(200, json={"names": []})
        )

        report = await validator.validate_stale()

        assert (report.checked, report.valid, report.transferred, report.unowned) == (
            3,
            1,
            1,
            1,
        )
        assert wallet_route.call_count == 1  # one lookup per wallet
        records = registration_repository.records
        assert records["01" * 32].bns_status == "valid"
        assert records["02" * 32].bns_status == "transferred"
        assert records["02" * 32].current_bns_owner == "alice.btc"
        assert records["02" * 32].bns_transferred_at is not None
        assert records["03" * 32].bns_status == "unowned"
        assert records["03" * 32].current_bns_owner is None
        assert records["04" * 32].last_bns_validation == fresh
        assert report.finished_at is not None

    @pytest.mark.asyncio
    async def test_lookup_failure_leaves_record_for_next_sweep(
        self, validator, registration_repository, bns_router
    ):
        registration_repository.add(make_registration("01" * 32, bns_name="alice.btc"))
        bns_router.get(names_url(WALLET)).mock(return_value=httpx.Response(500))

        report = await validator.validate_stale()

        assert report.failed == 1
        assert report.checked == 0
        record = registration_repository.records["01" * 32]
        assert record.last_bns_validation is None
        assert record.bns_status == "valid"

    @pytest.mark.asyncio
    async def test_failed_wallet_is_not_looked_up_again(
        self, validator, registration_repository, bns_router
    ):
        registration_repository.add(make_registration("01" * 32, bns_name="alice.btc"))
        registration_repository.add(make_registration("02" * 32, bns_name="alice.btc"))
        registration_repository.add(
            make_registration("03" * 32, bns_name="bob.btc", author_wallet=OTHER_WALLET)
        )
        wallet_route = bns_router.get(names_url(WALLET)).mock(
            return_value=httpx.Response(503)
        )
        bns_router.get(names_url(OTHER_WALLET)).mock(
            return_value=httpx.Response(200, json={"names": ["bob.btc"]})
        )

        report = await validator.validate_stale()

        assert wallet_route.call_count == 1
        assert report.failed == 2
        assert report.valid == 1
        records = registration_repository.records
        assert records["01" * 32].last_bns_validation is None
        assert records["02" * 32].last_bns_validation is None
        assert records["03" * 32].last_bns_validation is not None

    @pytest.mark.asyncio
    async def test_sweep_never_restores_valid(
        self, validator, registration_repository, bns_router
    ):
        registration_repository.add(
            make_registration(
                "01" * 32,
                bns_name="alice.btc",
                bns_status="transferred",
                current_bns_owner="bob.btc",
            )
        )
        bns_router.get(names_url(WALLET)).mock(
            return_value=httpx.Response(200, json={"names": ["alice.btc"]})
        )

        report = await validator.validate_stale()

        record = registration_repository.records["01" * 32]
        assert record.bns_status == "transferred"
        assert record.last_bns_validation is not None
        assert report.transferred == 1


class TestValidateWallet:
    @pytest.mark.asyncio
    async def test_manual_check_restores_valid(
        self, validator, registration_repository, bns_router
    ):
        registration_repository.add(
            make_registration(
                "01" * 32,
                bns_name="alice.btc",
                bns_status="unowned",
            )
        )
        bns_router.get(names_url(WALLET)).mock(
            return_value=httpx.Response(200, json={"names": ["alice.btc"]})
        )

        report = await validator.validate_wallet(WALLET)

        assert report.wallet == WALLET
        assert (report.total, report.valid) == (1, 1)
        assert report.current_names == ["alice.btc"]
        assert report.records[0]["bnsStatus"] == "valid"
        assert registration_repository.records["01" * 32].bns_status == "valid"

    @pytest.mark.asyncio
    async def test_registry_outage_propagates(self, validator, bns_router):
        bns_router.get(names_url(WALLET)).mock(side_effect=httpx.ConnectError)

        with pytest.raises(RegistryUnavailableError):
            await validator.validate_wallet(WALLET)

    @pytest.mark.asyncio
    async def test_status_lookups(self, validator, registration_repository):
        registration_repository.add(make_registration("01" * 32, bns_name="alice.btc"))
        registration_repository.add(make_registration("02" * 32))

        statuses = await validator.status_for_wallet(WALLET)

        assert [s["hash"] for s in statuses] == ["01" * 32]
        assert (await validator.status_for_hash("01" * 32))["bnsName"] == "alice.btc"
        assert await validator.status_for_hash("02" * 32) is None
