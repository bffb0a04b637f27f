"""Progress and message channel for long-running installs."""

from __future__ import annotations

from typing import Callable, Optional

from appliance_installer.logging import get_logger


log = get_logger(source="install", tags=["install"])

ProgressCallback = Callable[[float], None]
MessageCallback = Callable[[str], None]


def _noop_progress(fraction: float) -> None:
    return None


def _noop_message(message: str) -> None:
    return None


class ProgressChannel:
    """Push progress fractions and status text to caller callbacks.

    Fractions are clamped to [0, 1] and never go backwards; only the last
    value is kept.
    """

    def __init__(
        self,
        on_progress: Optional[ProgressCallback] = None,
        on_message: Optional[MessageCallback] = None,
    ):
        self._on_progress = on_progress or _noop_progress
        self._on_message = on_message or _noop_message
        self.last_fraction = 0.0

    def reset(self) -> None:
        """Start a new run; the next fraction may be lower than the last one."""
        self.last_fraction = 0.0

    def progress(self, fraction: float) -> None:
        fraction = min(max(float(fraction), self.last_fraction, 0.0), 1.0)
        self.last_fraction = fraction
        self._on_progress(fraction)

    def message(self, text: str) -> None:
        log.info(text)
        self._on_message(text)

    def warning(self, text: str) -> None:
        log.warning(text)
        self._on_message(f"Warning: {text}")

    def span(self, start: float, end: float) -> ProgressCallback:
        """Callback mapping a local [0, 1] fraction into [start, end]."""

        def report(fraction: float) -> None:
            self.progress(start + (end - start) * fraction)

        return report
