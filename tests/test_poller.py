# tests/test_poller.py
import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest

from dispatch_bridge.marketplace.client import ACK_PATH, POLLING_PATH, PartnerClient
from dispatch_bridge.marketplace.errors import ApiRequestError, TokenExpiredError, TransientNetworkError
from dispatch_bridge.marketplace.tokens import AUTH_PATH, TokenManager
from dispatch_bridge.pipeline.poller import EventPoller, event_types_for, is_trigger
from tests.helpers import BASE_URL, FakePartner, make_client

CRED = SimpleNamespace(
    id="cred-1", merchant_id="m-1", client_id="client-1", client_secret="s3cr3t",
    trigger_on_ready_to_pickup=True, trigger_on_dispatched=False,
)


def test_event_types_follow_trigger_flags():
    assert event_types_for(CRED) == ["RTP"]
    both = SimpleNamespace(trigger_on_ready_to_pickup=True, trigger_on_dispatched=True)
    assert event_types_for(both) == ["RTP", "DSP"]
    none = SimpleNamespace(trigger_on_ready_to_pickup=False, trigger_on_dispatched=False)
    assert event_types_for(none) == []


def test_poll_returns_events_and_sends_merchant_header():
    partner = FakePartner()
    partner.add_event("m-1", "evt-1", "order-1")
    events = asyncio.run(EventPoller(make_client(partner)).poll(CRED, ["RTP"]))

    assert [e.id for e in events] == ["evt-1"]
    assert events[0].order_id == "order-1"
    assert events[0].full_code == "READY_TO_PICKUP"
    assert is_trigger(CRED, events[0])

    poll = [r for r in partner.calls if r.url.path == POLLING_PATH][0]
    assert poll.headers["x-polling-merchants"] == "m-1"
    assert poll.headers["Authorization"].startswith("Bearer ")
    assert poll.url.params["types"] == "RTP"
    assert poll.url.params["excludeHeartbeat"] == "true"


def test_poll_204_means_no_events():
    partner = FakePartner()
    assert asyncio.run(EventPoller(make_client(partner)).poll(CRED, ["RTP"])) == []


def test_poll_retries_once_after_rejected_token():
    partner = FakePartner()
    partner.add_event("m-1", "evt-1", "order-1")
    client = make_client(partner)

    async def run():
        await client.tokens.get_valid_token(CRED)
        partner.reject_tokens_once = True
        return await EventPoller(client).poll(CRED, ["RTP"])

    events = asyncio.run(run())
    assert [e.id for e in events] == ["evt-1"]
    assert partner.count(AUTH_PATH) == 2
    assert partner.count(POLLING_PATH) == 2


def test_client_401_clears_cached_token():
    partner = FakePartner()
    client = make_client(partner)

    async def run():
        await client.tokens.get_valid_token(CRED)
        partner.reject_tokens_once = True
        await client.poll_events(CRED, ["RTP"])

    with pytest.raises(TokenExpiredError):
        asyncio.run(run())
    assert client.tokens.store.get(CRED.id) is None


def test_poll_server_error_propagates():
    partner = FakePartner()
    partner.poll_status = 503
    with pytest.raises(ApiRequestError) as err:
        asyncio.run(EventPoller(make_client(partner)).poll(CRED, ["RTP"]))
    assert err.value.status_code == 503


def test_poll_timeout_is_transient():
    partner = FakePartner()

    async def handler(request):
        if request.url.path == POLLING_PATH:
            raise httpx.ReadTimeout("slow", request=request)
        return await partner.handler(request)

    transport = httpx.MockTransport(handler)
    client = PartnerClient(TokenManager(base_url=BASE_URL, transport=transport), base_url=BASE_URL, transport=transport)
    with pytest.raises(TransientNetworkError):
        asyncio.run(EventPoller(client).poll(CRED, ["RTP"]))


def test_acknowledge_posts_ids():
    partner = FakePartner()
    partner.add_event("m-1", "evt-1", "order-1")
    partner.add_event("m-1", "evt-2", "order-2")
    ok = asyncio.run(EventPoller(make_client(partner)).acknowledge(CRED, ["evt-1", "evt-2"]))

    assert ok is True
    ack = [r for r in partner.calls if r.url.path == ACK_PATH][0]
    assert json.loads(ack.content) == [{"id": "evt-1"}, {"id": "evt-2"}]
    assert partner.events["m-1"] == []


def test_acknowledge_failure_is_reported_not_raised():
    partner = FakePartner()
    partner.ack_status = 500
    ok = asyncio.run(EventPoller(make_client(partner)).acknowledge(CRED, ["evt-1"]))
    assert ok is False


def test_acknowledge_nothing_makes_no_call():
    partner = FakePartner()
    assert asyncio.run(EventPoller(make_client(partner)).acknowledge(CRED, [])) is True
    assert partner.calls == []
