"""Readiness probing of the inference backend.

A probe answers two questions:

1. Is the backend reachable?  Asked with a bounded-timeout request to the
   model listing endpoint.  Any transport failure or non-success status means
   ``reachable=False``.
2. Is the configured model being served?  The reported identifiers are
   matched against the configured name, either exactly or as the last path
   segment of a namespaced identifier (``org/model`` matches ``model``).

The two failures are reported separately so that operators can tell "not
running" apart from "not installed or still loading".

The same probe drives the startup handshake (:func:`wait_until_ready`,
:func:`run_startup_handshake`) and the ``/api/health`` endpoint, whose
status line comes from :func:`describe_status`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from imagehive.core.backend import InferenceBackend
from imagehive.core.errors import BackendError

logger = logging.getLogger(__name__)

CHAT_PROBE_MESSAGE = (
    "hello, You are ImageHive and AI assistant here to help the user. "
    "please tell us your capabilities."
)
SNIPPET_LENGTH = 220


@dataclass(frozen=True)
class ReadinessStatus:
    reachable: bool
    model_ready: bool
    error: str | None = None

    @property
    def ready(self) -> bool:
        return self.reachable and self.model_ready

    def to_dict(self) -> dict:
        data: dict = {"reachable": self.reachable, "modelReady": self.model_ready}
        if self.error:
            data["error"] = self.error
        return data


def match_model(configured: str, reported: Iterable[str]) -> str | None:
    """Return the first reported identifier that serves *configured*.

    Matches on exact equality or on a ``"/<configured>"`` suffix.
    """
    suffix = f"/{configured}"
    for model_id in reported:
        if model_id == configured or model_id.endswith(suffix):
            return model_id
    return None


class ReadinessProber:
    """Probe one backend for one model."""

    def __init__(self, backend: InferenceBackend, model: str) -> None:
        self.backend = backend
        self.model = model

    def probe(self) -> ReadinessStatus:
        try:
            reported = self.backend.list_models()
        except BackendError as exc:
            return ReadinessStatus(reachable=False, model_ready=False, error=str(exc))

        if match_model(self.model, reported) is not None:
            return ReadinessStatus(reachable=True, model_ready=True)

        listed = ", ".join(reported) if reported else "none reported"
        return ReadinessStatus(
            reachable=True,
            model_ready=False,
            error=f"Model '{self.model}' is not served. Reported models: {listed}",
        )


def describe_status(status: ReadinessStatus | None) -> str:
    """Human-readable startup line derived from the two readiness flags."""
    if status is None:
        return "Waiting for server to answer…"
    if not status.reachable:
        return "Starting local model…"
    if not status.model_ready:
        return "Downloading and loading the model…"
    return "Local model is ready."


def wait_until_ready(
    prober: ReadinessProber,
    *,
    timeout: float,
    interval: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> ReadinessStatus:
    """Poll *prober* with a fixed backoff until ready or *timeout* elapses.

    Each probe is itself bounded by the backend's probe timeout, and the loop
    never sleeps past the deadline, so the call returns within roughly
    ``timeout`` plus one probe.

    Returns:
        The last status observed.  Callers check ``status.ready``.
    """
    deadline = clock() + timeout
    attempt = 0
    while True:
        attempt += 1
        status = prober.probe()
        if status.ready:
            logger.info("Backend ready after %d probe(s).", attempt)
            return status

        remaining = deadline - clock()
        if remaining <= 0:
            logger.warning("Backend not ready after %d probe(s): %s", attempt, status.error)
            return status

        logger.info("%s (%s)", describe_status(status), status.error)
        sleep(min(interval, remaining))


def verify_chat(backend: InferenceBackend) -> bool:
    """Send one short chat round-trip and log a snippet of the reply."""
    try:
        reply = backend.send_chat(
            [
                {"role": "system", "content": "You are ImageHive, a visual prompt assistant."},
                {"role": "user", "content": CHAT_PROBE_MESSAGE},
            ]
        ).strip()
    except BackendError as exc:
        logger.warning("Chat probe failed: %s", exc)
        return False

    if not reply:
        logger.warning("Chat probe failed: empty reply.")
        return False

    snippet = reply if len(reply) <= SNIPPET_LENGTH else f"{reply[:SNIPPET_LENGTH]}…"
    logger.info("Backend responded to startup probe: %s", snippet)
    return True


def run_startup_handshake(
    cfg,
    backend: InferenceBackend,
    *,
    model: str | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Gate process startup on backend readiness.

    Args:
        cfg: :class:`~imagehive.core.config.ImageHiveConfig` supplying the
            timeouts and the ``allow_offline`` / ``verify_chat`` flags.
        backend: Backend adapter to probe.
        model: Model to look for (defaults to ``cfg.backend_model``).

    Returns:
        ``True`` when startup may proceed: the backend is ready (and answered
        the chat probe, if enabled), or ``allow_offline`` is set.
    """
    prober = ReadinessProber(backend, model or cfg.backend_model)
    logger.info(
        "Waiting up to %.0fs for model '%s' at %s.",
        cfg.startup_timeout,
        prober.model,
        backend.host,
    )
    status = wait_until_ready(
        prober,
        timeout=cfg.startup_timeout,
        interval=cfg.startup_interval,
        clock=clock,
        sleep=sleep,
    )

    if not status.ready:
        if cfg.allow_offline:
            logger.warning("Continuing offline: %s", status.error)
            return True
        logger.error("Startup failed: %s", status.error)
        return False

    if cfg.verify_chat and not verify_chat(backend):
        if cfg.allow_offline:
            logger.warning("Continuing offline after failed chat probe.")
            return True
        return False

    return True
