"""Local acceleration hardware detection.

The relay tags every reply with ``fromGpu`` and the health endpoint reports
the detected devices.  Hardware does not change while the process runs, so
detection happens once and the result is shared by every request through a
:class:`OnceCell`.

``torch`` is imported lazily inside :func:`detect_gpu` so that importing this
module stays cheap and the server still starts on machines where the optional
``gpu`` extra is not installed.  In that case the status simply reports the
CPU fallback together with the reason.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class GpuStatus:
    """Result of a hardware probe.

    Attributes:
        available: ``True`` when at least one CUDA device was found.
        devices: Human-readable device names.
        method: ``"torch"`` when detection succeeded, ``"fallback-cpu"``
            when it could not run.
        error: Why detection fell back to the CPU, if it did.
    """

    available: bool
    devices: tuple[str, ...] = field(default_factory=tuple)
    method: str = "torch"
    error: str | None = None

    def to_dict(self) -> dict:
        """Serialise for the ``/api/health`` response."""
        data: dict = {
            "available": self.available,
            "devices": list(self.devices),
            "method": self.method,
        }
        if self.error:
            data["error"] = self.error
        return data


class OnceCell(Generic[T]):
    """Thread-safe, lazily initialised single-assignment cell.

    The first call to :meth:`get_or_init` runs the factory under a lock and
    stores its result; later calls return the stored value without locking.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: T | None = None
        self._set = False

    def get_or_init(self, factory: Callable[[], T]) -> T:
        if self._set:
            return self._value  # type: ignore[return-value]
        with self._lock:
            if not self._set:
                self._value = factory()
                self._set = True
        return self._value  # type: ignore[return-value]

    @property
    def is_set(self) -> bool:
        return self._set

    def reset(self) -> None:
        """Forget the stored value.  Only meant for tests."""
        with self._lock:
            self._value = None
            self._set = False


def detect_gpu() -> GpuStatus:
    """Probe CUDA devices through torch.

    Returns:
        A :class:`GpuStatus`.  Any failure (torch not installed, driver
        errors) is reported as ``available=False`` with ``method`` set to
        ``"fallback-cpu"`` rather than raised.
    """
    try:
        import torch

        if not torch.cuda.is_available():
            return GpuStatus(available=False, devices=(), method="torch")
        devices = tuple(
            torch.cuda.get_device_name(index) for index in range(torch.cuda.device_count())
        )
    except Exception as exc:
        logger.info("GPU detection unavailable, assuming CPU: %s", exc)
        return GpuStatus(available=False, devices=(), method="fallback-cpu", error=str(exc))

    return GpuStatus(available=len(devices) > 0, devices=devices, method="torch")


_gpu_cell: OnceCell[GpuStatus] = OnceCell()


def get_gpu_status() -> GpuStatus:
    """Return the process-wide hardware status, detecting it on first use."""
    return _gpu_cell.get_or_init(detect_gpu)


def reset_gpu_status() -> None:
    """Clear the cached hardware status so the next call re-detects."""
    _gpu_cell.reset()
