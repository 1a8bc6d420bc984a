"""Single-slot storage for a signal awaiting its confirmation bar."""

from __future__ import annotations

from decision_engine.types import PendingSignal
from decision_engine.utils.logging import get_logger


class PendingSlot:
    """Holds at most one pending signal.

    Staging while a signal is already held replaces it (most recent wins).
    ``take`` always empties the slot, so a signal is read at most once, and
    only hands it out on the bar immediately after the one it was staged on.
    """

    def __init__(self) -> None:
        self._signal: PendingSignal | None = None
        self._logger = get_logger("decision_engine.signals.pending")

    @property
    def signal(self) -> PendingSignal | None:
        return self._signal

    def __bool__(self) -> bool:
        return self._signal is not None

    def stage(self, signal: PendingSignal) -> None:
        if self._signal is not None:
            self._logger.warning(
                "pending_signal_overwritten",
                previous=self._signal.pattern_name,
                previous_bar=self._signal.staged_bar,
                replacement=signal.pattern_name,
                bar=signal.staged_bar,
            )
        self._signal = signal

    def take(self, bar_index: int) -> PendingSignal | None:
        signal, self._signal = self._signal, None
        if signal is None:
            return None
        if bar_index != signal.staged_bar + 1:
            self._logger.info(
                "pending_signal_expired",
                pattern=signal.pattern_name,
                staged_bar=signal.staged_bar,
                bar=bar_index,
            )
            return None
        return signal

    def clear(self) -> None:
        if self._signal is not None:
            self._logger.info("pending_signal_cleared", pattern=self._signal.pattern_name)
        self._signal = None
