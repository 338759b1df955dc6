"""Unit tests for the Black Forest Labs submit-then-poll provider."""

import base64
import json
from decimal import Decimal

import httpx
import pytest

from imgrouter.core.circuit_breaker import CircuitState
from imgrouter.core.config import ProviderSettings
from imgrouter.core.models import GenerationRequest
from imgrouter.core.providers.bfl import BFLProvider
from imgrouter.utils.exceptions import ErrorKind, PollingTimeoutError

REQUEST = GenerationRequest(
    source_url="https://example.com/cat.jpg", style="pixel", session_id="s1"
)


class BFLServer:
    """Scripted BFL API: one submission answer and a queue of poll answers."""

    def __init__(self, polls, submit=None):
        self.polls = list(polls)
        self.submit = submit or httpx.Response(200, json={"id": "req-1", "polling_url": "x"})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            return self.submit
        if len(self.polls) > 1:
            return self.polls.pop(0)
        return self.polls[0]

    @property
    def submissions(self):
        return [r for r in self.requests if r.method == "POST"]

    @property
    def poll_requests(self):
        return [r for r in self.requests if r.method == "GET"]


def _pending():
    return httpx.Response(200, json={"id": "req-1", "status": "Request Pending"})


def _ready(sample):
    return httpx.Response(200, json={"id": "req-1", "status": "Ready", "result": {"sample": sample}})


def _provider(server, sleep, clock, api_key="bfl-key", poll_max_attempts=5, **settings):
    client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    base = {"timeout": 30.0, "max_retries": 2, "failure_threshold": 3, "api_key": api_key}
    base.update(settings)
    return BFLProvider(
        ProviderSettings(**base),
        client=client,
        poll_max_attempts=poll_max_attempts,
        poll_interval=5.0,
        sleep=sleep,
        clock=clock,
    )


@pytest.mark.unit
@pytest.mark.asyncio
class TestBFLGenerate:
    async def test_submit_then_poll_base64_sample(self, png_bytes, sleep, clock):
        server = BFLServer([_pending(), _ready(base64.b64encode(png_bytes).decode())])
        provider = _provider(server, sleep, clock)

        result = await provider.generate(REQUEST)

        assert result.success is True
        assert result.image_data == png_bytes
        assert result.content_type == "image/png"
        assert result.cost == Decimal("0.003")
        assert result.model == "flux-schnell"
        assert sleep.calls == [5.0]

        submit = server.submissions[0]
        assert submit.url.path == "/v1/flux-schnell"
        assert submit.headers["x-key"] == "bfl-key"
        payload = json.loads(submit.content)
        assert payload["prompt"].startswith("Transform into pixel art style")
        assert payload["output_format"] == "jpeg"
        assert server.poll_requests[0].url.params["id"] == "req-1"

    async def test_url_sample(self, sleep, clock):
        server = BFLServer([_ready("https://delivery.bfl.ai/abc.jpg")])
        result = await _provider(server, sleep, clock).generate(REQUEST)
        assert result.success is True
        assert result.image_url == "https://delivery.bfl.ai/abc.jpg"
        assert result.image_data is None

    async def test_content_moderated_is_charged(self, sleep, clock):
        server = BFLServer([httpx.Response(200, json={"status": "Content Moderated"})])
        provider = _provider(server, sleep, clock)
        result = await provider.generate(REQUEST)
        assert result.success is False
        assert result.error_kind is ErrorKind.CONTENT_MODERATED
        assert result.cost == Decimal("0.003")
        assert provider.breaker.failure_count == 0
        assert len(server.submissions) == 1

    async def test_request_moderated_is_free(self, sleep, clock):
        server = BFLServer([httpx.Response(200, json={"status": "Request Moderated"})])
        result = await _provider(server, sleep, clock).generate(REQUEST)
        assert result.success is False
        assert result.error_kind is ErrorKind.REQUEST_MODERATED
        assert result.cost == Decimal("0")

    async def test_polling_timeout_not_resubmitted(self, sleep, clock):
        server = BFLServer([_pending()])
        provider = _provider(server, sleep, clock, poll_max_attempts=3)
        result = await provider.generate(REQUEST)
        assert result.success is False
        assert result.error_kind is ErrorKind.TIMEOUT
        assert isinstance(result.exception, PollingTimeoutError)
        assert result.cost == Decimal("0")
        assert len(server.poll_requests) == 3
        assert len(server.submissions) == 1
        assert sleep.calls == [5.0, 5.0]

    async def test_transient_poll_error_tolerated(self, png_bytes, sleep, clock):
        server = BFLServer(
            [httpx.Response(500, text="hiccup"), _ready(base64.b64encode(png_bytes).decode())]
        )
        result = await _provider(server, sleep, clock).generate(REQUEST)
        assert result.success is True
        assert len(server.submissions) == 1

    async def test_poll_auth_error_fails_immediately(self, sleep, clock):
        server = BFLServer([httpx.Response(403, text="forbidden")])
        result = await _provider(server, sleep, clock).generate(REQUEST)
        assert result.error_kind is ErrorKind.AUTHENTICATION
        assert len(server.poll_requests) == 1

    async def test_missing_api_key_makes_no_call(self, sleep, clock):
        server = BFLServer([_pending()])
        provider = _provider(server, sleep, clock, api_key="")
        result = await provider.generate(REQUEST)
        assert result.success is False
        assert result.error_kind is ErrorKind.AUTHENTICATION
        assert server.requests == []

    async def test_insufficient_credits(self, sleep, clock):
        server = BFLServer([], submit=httpx.Response(402, json={"detail": "no credits"}))
        result = await _provider(server, sleep, clock).generate(REQUEST)
        assert result.error_kind is ErrorKind.INSUFFICIENT_CREDITS
        assert sleep.calls == []

    async def test_submission_without_id(self, sleep, clock):
        server = BFLServer([], submit=httpx.Response(200, json={"status": "ok"}))
        result = await _provider(server, sleep, clock).generate(REQUEST)
        assert result.error_kind is ErrorKind.INVALID_PAYLOAD

    async def test_ready_without_sample(self, sleep, clock):
        server = BFLServer([httpx.Response(200, json={"status": "Ready", "result": {}})])
        result = await _provider(server, sleep, clock).generate(REQUEST)
        assert result.error_kind is ErrorKind.INVALID_PAYLOAD
        assert "no image data" in result.error

    async def test_repeated_failures_open_circuit(self, sleep, clock):
        server = BFLServer([], submit=httpx.Response(500, text="down"))
        provider = _provider(server, sleep, clock, max_retries=1, failure_threshold=2)
        await provider.generate(REQUEST)
        await provider.generate(REQUEST)
        assert provider.breaker.state is CircuitState.OPEN
        third = await provider.generate(REQUEST)
        assert third.error_kind is ErrorKind.CIRCUIT_OPEN
        assert len(server.submissions) == 2


@pytest.mark.unit
@pytest.mark.asyncio
class TestBFLAvailability:
    async def test_no_key_unavailable_without_call(self, sleep, clock):
        server = BFLServer([httpx.Response(200)])
        assert await _provider(server, sleep, clock, api_key="").is_available() is False
        assert server.requests == []

    async def test_key_rejected(self, sleep, clock):
        server = BFLServer([httpx.Response(401)])
        assert await _provider(server, sleep, clock).is_available() is False

    async def test_unknown_id_still_available(self, sleep, clock):
        server = BFLServer([httpx.Response(404, json={"status": "Task not found"})])
        assert await _provider(server, sleep, clock).is_available() is True
