"""
Unit Tests for the Bank Account Directory Client

Run with: pytest tests/test_bank_accounts.py -v
"""

import pytest

import httpx

from cheque_intake.clients.bank_accounts import (
    DROPDOWN_PATH,
    BankAccountDirectory,
    BankAccountLookupError,
)


ACCOUNTS = [
    {
        "id": "acct-1",
        "bankName": "Emirates NBD",
        "accountName": "Rent Collection",
        "accountNumberMasked": "****1234",
        "isPrimary": True,
    },
    {
        "id": "acct-2",
        "bankName": "ADCB",
        "accountName": "Deposits",
        "accountNumberMasked": "****9876",
    },
]


class CountingHandler:
    """MockTransport handler that counts directory calls."""

    def __init__(self, status_code: int, **kwargs):
        self.status_code = status_code
        self.kwargs = kwargs
        self.calls = 0
        self.last_request = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        self.last_request = request
        return httpx.Response(self.status_code, **self.kwargs)


def make_directory(handler, cache_minutes=10):
    return BankAccountDirectory(
        base_url="http://accounts.test",
        token="secret",
        cache_minutes=cache_minutes,
        transport=httpx.MockTransport(handler),
    )


class TestBankAccountDirectory:
    """Test BankAccountDirectory functionality."""

    @pytest.mark.asyncio
    async def test_list_accounts_from_envelope(self):
        handler = CountingHandler(200, json={"success": True, "data": ACCOUNTS})
        directory = make_directory(handler)

        accounts = await directory.list_accounts()

        assert [a.id for a in accounts] == ["acct-1", "acct-2"]
        assert accounts[0].is_primary is True
        assert accounts[1].is_primary is False
        assert accounts[1].account_number_masked == "****9876"
        assert handler.last_request.url.path == DROPDOWN_PATH
        assert handler.last_request.headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_list_accounts_from_bare_list(self):
        directory = make_directory(CountingHandler(200, json=ACCOUNTS))

        accounts = await directory.list_accounts()

        assert len(accounts) == 2

    @pytest.mark.asyncio
    async def test_results_are_cached(self):
        handler = CountingHandler(200, json={"data": ACCOUNTS})
        directory = make_directory(handler)

        await directory.list_accounts()
        await directory.list_accounts()

        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_cache_forces_refetch(self):
        handler = CountingHandler(200, json={"data": ACCOUNTS})
        directory = make_directory(handler)

        await directory.list_accounts()
        directory.invalidate_cache()
        await directory.list_accounts()

        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_zero_minute_cache_always_refetches(self):
        handler = CountingHandler(200, json={"data": ACCOUNTS})
        directory = make_directory(handler, cache_minutes=0)

        await directory.list_accounts()
        await directory.list_accounts()

        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_http_error(self):
        directory = make_directory(CountingHandler(503))

        with pytest.raises(BankAccountLookupError):
            await directory.list_accounts()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BankAccountLookupError):
            await make_directory(handler).list_accounts()

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        directory = make_directory(CountingHandler(200, text="<html>"))

        with pytest.raises(BankAccountLookupError):
            await directory.list_accounts()

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        directory = make_directory(CountingHandler(200, json={"data": {"id": "acct-1"}}))

        with pytest.raises(BankAccountLookupError):
            await directory.list_accounts()
