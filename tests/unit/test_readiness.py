"""Tests for imagehive.core.readiness — backend readiness probing.

Tests cover:
- Model matching by exact name and by namespaced suffix.
- Probe results for unreachable backends and missing models.
- Status lines derived from the readiness flags.
- Bounded polling with an injected clock.
- The startup handshake with and without allow_offline / verify_chat.
"""

from __future__ import annotations

import httpx
import pytest

from imagehive.core.backend import InferenceBackend, OpenAIChatBackend
from imagehive.core.errors import BackendError
from imagehive.core.readiness import (
    ReadinessProber,
    ReadinessStatus,
    describe_status,
    match_model,
    run_startup_handshake,
    verify_chat,
    wait_until_ready,
)


class StubBackend(InferenceBackend):
    """Backend whose listing answers come from a script."""

    host = "http://stub.test"

    def __init__(self, listings=None, reply="I can help with prompts.", chat_error=None):
        # Each entry is a list of model ids or an exception to raise.
        self.listings = list(listings or [])
        self.reply = reply
        self.chat_error = chat_error
        self.list_calls = 0
        self.chat_calls = 0

    def list_models(self):
        self.list_calls += 1
        entry = self.listings[min(self.list_calls, len(self.listings)) - 1]
        if isinstance(entry, Exception):
            raise entry
        return entry

    def send_chat(self, messages):
        self.chat_calls += 1
        if self.chat_error is not None:
            raise self.chat_error
        return self.reply

    def stream_chat(self, messages):
        yield self.reply


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ============================================================================
# Matching and probing
# ============================================================================


class TestMatchModel:
    def test_exact(self):
        assert match_model("foo", ["foo"]) == "foo"

    def test_namespaced_suffix(self):
        assert match_model("foo", ["org/foo", "bar"]) == "org/foo"

    def test_partial_name_does_not_match(self):
        assert match_model("foo", ["org/foobar", "xfoo"]) is None


class TestProbe:
    def test_ready(self):
        status = ReadinessProber(StubBackend([["org/foo", "bar"]]), "foo").probe()
        assert status == ReadinessStatus(reachable=True, model_ready=True)
        assert status.ready

    def test_model_missing_lists_reported(self):
        status = ReadinessProber(StubBackend([["org/foo", "bar"]]), "baz").probe()
        assert status.reachable is True
        assert status.model_ready is False
        assert "org/foo, bar" in status.error
        assert "baz" in status.error

    def test_empty_listing(self):
        status = ReadinessProber(StubBackend([[]]), "baz").probe()
        assert "none reported" in status.error

    def test_unreachable(self):
        status = ReadinessProber(StubBackend([BackendError("refused")]), "foo").probe()
        assert status.reachable is False
        assert status.model_ready is False
        assert status.error == "refused"

    def test_probe_timeout_is_unreachable(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        backend = OpenAIChatBackend(
            "http://slow.test", "foo", probe_timeout=0.1, transport=httpx.MockTransport(handler)
        )
        with backend:
            status = ReadinessProber(backend, "foo").probe()
        assert status.reachable is False
        assert status.model_ready is False
        assert "timed out" in status.error

    def test_malformed_listing_is_unreachable(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"data": 5}))
        with OpenAIChatBackend("http://odd.test", "foo", transport=transport) as backend:
            status = ReadinessProber(backend, "foo").probe()
        assert status.reachable is False
        assert "unexpected shape" in status.error

    def test_to_dict(self):
        assert ReadinessStatus(reachable=True, model_ready=True).to_dict() == {
            "reachable": True,
            "modelReady": True,
        }


class TestDescribeStatus:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (None, "Waiting for server to answer"),
            (ReadinessStatus(reachable=False, model_ready=False), "Starting local model"),
            (ReadinessStatus(reachable=True, model_ready=False), "Downloading and loading"),
            (ReadinessStatus(reachable=True, model_ready=True), "Local model is ready."),
        ],
    )
    def test_lines(self, status, expected):
        assert describe_status(status).startswith(expected)


# ============================================================================
# Polling and startup
# ============================================================================


class TestWaitUntilReady:
    def test_returns_once_ready(self):
        backend = StubBackend([BackendError("refused"), [], ["foo"]])
        clock = FakeClock()
        status = wait_until_ready(
            ReadinessProber(backend, "foo"), timeout=10, interval=1, clock=clock, sleep=clock.sleep
        )
        assert status.ready
        assert backend.list_calls == 3
        assert clock.sleeps == [1, 1]

    def test_gives_up_at_deadline(self):
        backend = StubBackend([BackendError("refused")])
        clock = FakeClock()
        status = wait_until_ready(
            ReadinessProber(backend, "foo"), timeout=2.5, interval=1, clock=clock, sleep=clock.sleep
        )
        assert not status.ready
        assert status.reachable is False
        assert clock.now == pytest.approx(2.5)
        assert clock.sleeps == [1, 1, 0.5]

    def test_zero_timeout_probes_once(self):
        backend = StubBackend([[]])
        clock = FakeClock()
        wait_until_ready(
            ReadinessProber(backend, "foo"), timeout=0, interval=1, clock=clock, sleep=clock.sleep
        )
        assert backend.list_calls == 1
        assert clock.sleeps == []


class TestVerifyChat:
    def test_success(self):
        assert verify_chat(StubBackend()) is True

    def test_empty_reply(self):
        assert verify_chat(StubBackend(reply="  ")) is False

    def test_failure(self):
        assert verify_chat(StubBackend(chat_error=BackendError("boom"))) is False


class TestRunStartupHandshake:
    def run(self, cfg, backend):
        clock = FakeClock()
        return run_startup_handshake(cfg, backend, clock=clock, sleep=clock.sleep)

    def test_ready_backend(self, test_config):
        backend = StubBackend([[test_config.backend_model]])
        assert self.run(test_config, backend) is True
        assert backend.chat_calls == 1

    def test_not_ready_fails(self, test_config):
        backend = StubBackend([BackendError("refused")])
        assert self.run(test_config, backend) is False
        assert backend.chat_calls == 0

    def test_allow_offline(self, test_config):
        test_config.allow_offline = True
        assert self.run(test_config, StubBackend([BackendError("refused")])) is True

    def test_chat_probe_failure(self, test_config):
        backend = StubBackend([[test_config.backend_model]], chat_error=BackendError("boom"))
        assert self.run(test_config, backend) is False

    def test_chat_probe_disabled(self, test_config):
        test_config.verify_chat = False
        backend = StubBackend([[test_config.backend_model]], chat_error=BackendError("boom"))
        assert self.run(test_config, backend) is True
        assert backend.chat_calls == 0

    def test_model_override(self, test_config):
        backend = StubBackend([["org/other"]])
        clock = FakeClock()
        assert run_startup_handshake(
            test_config, backend, model="other", clock=clock, sleep=clock.sleep
        )
