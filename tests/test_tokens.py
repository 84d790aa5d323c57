# tests/test_tokens.py
import asyncio
from types import SimpleNamespace

import httpx
import pytest

from dispatch_bridge.marketplace.errors import AuthError, TransientNetworkError
from dispatch_bridge.marketplace.tokens import AUTH_PATH, TokenManager, TokenStore
from tests.helpers import BASE_URL, FakeClock, FakePartner

CRED = SimpleNamespace(id="cred-1", merchant_id="m-1", client_id="client-1", client_secret="s3cr3t")


def _manager(partner, clock):
    return TokenManager(TokenStore(), base_url=BASE_URL, safety_margin=60, transport=partner.transport, clock=clock)


def test_token_is_reused_while_valid():
    partner, clock = FakePartner(), FakeClock()
    partner.expires_in = 3600
    tm = _manager(partner, clock)

    async def run():
        first = await tm.get_valid_token(CRED)
        clock.now += 3539
        second = await tm.get_valid_token(CRED)
        return first, second

    first, second = asyncio.run(run())
    assert first == second
    assert partner.count(AUTH_PATH) == 1


def test_token_refreshes_inside_safety_margin():
    partner, clock = FakePartner(), FakeClock()
    partner.expires_in = 3600
    tm = _manager(partner, clock)

    async def run():
        first = await tm.get_valid_token(CRED)
        clock.now += 3541
        return first, await tm.get_valid_token(CRED)

    first, second = asyncio.run(run())
    assert first != second
    assert partner.count(AUTH_PATH) == 2


def test_clear_token_forces_reauthentication():
    partner, clock = FakePartner(), FakeClock()
    tm = _manager(partner, clock)

    async def run():
        await tm.get_valid_token(CRED)
        tm.clear_token(CRED.id)
        assert len(tm.store) == 0
        await tm.get_valid_token(CRED)

    asyncio.run(run())
    assert partner.count(AUTH_PATH) == 2


def test_auth_sends_client_credentials_form():
    partner, clock = FakePartner(), FakeClock()
    tm = _manager(partner, clock)
    asyncio.run(tm.get_valid_token(CRED))

    req = partner.calls[0]
    assert req.method == "POST"
    body = req.content.decode()
    assert "grantType=client_credentials" in body
    assert "clientId=client-1" in body
    assert "clientSecret=s3cr3t" in body


def test_auth_rejection_raises_with_status_and_body():
    partner, clock = FakePartner(), FakeClock()
    partner.auth_status = 401
    tm = _manager(partner, clock)

    with pytest.raises(AuthError) as err:
        asyncio.run(tm.get_valid_token(CRED))
    assert err.value.status_code == 401
    assert "invalid_client" in err.value.body
    assert tm.store.get(CRED.id) is None


def test_auth_timeout_is_transient():
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    tm = TokenManager(base_url=BASE_URL, transport=httpx.MockTransport(handler), clock=FakeClock())
    with pytest.raises(TransientNetworkError):
        asyncio.run(tm.get_valid_token(CRED))


def test_concurrent_callers_share_one_exchange():
    partner, clock = FakePartner(), FakeClock()
    tm = _manager(partner, clock)

    async def run():
        return await asyncio.gather(*(tm.get_valid_token(CRED) for _ in range(5)))

    tokens = asyncio.run(run())
    assert len(set(tokens)) == 1
    assert partner.count(AUTH_PATH) == 1
