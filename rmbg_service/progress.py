"""Progress reporting for model acquisition."""

from __future__ import annotations

import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]


class ProgressReporter:
    """
    Wrap a caller callback so reported fractions stay within [0, 1] and never
    go backwards during one acquisition call.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self._last = 0.0

    @property
    def last(self) -> float:
        return self._last

    def __call__(self, fraction: float, label: str) -> None:
        fraction = max(min(float(fraction), 1.0), self._last)
        self._last = fraction
        logger.debug("progress %.3f %s", fraction, label)
        if self._callback is not None:
            self._callback(fraction, label)
