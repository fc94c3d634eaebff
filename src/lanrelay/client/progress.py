"""Sender-side progress estimate and acknowledgment deadline.

The relay acknowledges a transfer only once it is stored, and the transport
reports no upload progress, so the sender shows an estimate:

    0-50%   while the file is encoded locally
    50%     when transmission starts
    50-94%  synthetic growth while awaiting the acknowledgment
    100%    on a successful acknowledgment
    0%      on a failed acknowledgment or timeout
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

ENCODE_SHARE = 50.0
WAIT_CEILING = 94.0
DEFAULT_ACK_TIMEOUT = 60.0


class ProgressEstimator:
    """Monotonic, bounded progress for one transfer."""

    def __init__(
        self,
        timeout: float = DEFAULT_ACK_TIMEOUT,
        half_life: float = 5.0,
        listener: Callable[[float], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = timeout
        self.half_life = half_life
        self._listener = listener
        self._clock = clock
        self._value = 0.0
        self._started_at: float | None = None
        self._finished = False

    @property
    def value(self) -> float:
        return self._value

    @property
    def finished(self) -> bool:
        return self._finished

    def _publish(self) -> None:
        if self._listener:
            self._listener(self._value)

    def _advance(self, value: float) -> None:
        if self._finished or value <= self._value:
            return
        self._value = value
        self._publish()

    def encoding(self, fraction: float) -> None:
        """Report local encoding progress as a fraction in [0, 1]."""
        fraction = min(max(fraction, 0.0), 1.0)
        self._advance(ENCODE_SHARE * fraction)

    def transmission_started(self) -> None:
        self._started_at = self._clock()
        self._advance(ENCODE_SHARE)

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def remaining(self) -> float:
        """Seconds left before the acknowledgment deadline."""
        return self.timeout - self.elapsed()

    def expired(self) -> bool:
        return self._started_at is not None and self.remaining() <= 0

    def tick(self) -> None:
        """Grow the waiting estimate toward, but never reaching, 95%."""
        if self._started_at is None:
            return
        decay = 0.5 ** (self.elapsed() / self.half_life)
        self._advance(ENCODE_SHARE + (WAIT_CEILING - ENCODE_SHARE) * (1.0 - decay))

    def succeeded(self) -> None:
        if self._finished:
            return
        self._value = 100.0
        self._finished = True
        self._publish()

    def failed(self) -> None:
        if self._finished:
            return
        self._value = 0.0
        self._finished = True
        self._publish()
