"""
Stagnation detection for Bragent.

Watches the signatures of recent actions and flags an oracle that keeps
repeating itself or oscillates between two actions.
"""

import logging
from collections import deque
from enum import Enum

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    OK = "ok"
    LOOP = "loop"


class StagnationDetector:
    """Sliding window over the last action signatures.

    A signature loops when it occurs repeat_threshold times in the window,
    or when the last four signatures alternate A, B, A, B with A != B.
    """

    def __init__(self, window: int = 10, repeat_threshold: int = 4):
        self.repeat_threshold = repeat_threshold
        self._recent: deque[str] = deque(maxlen=window)

    def observe(self, signature: str) -> Verdict:
        """Record a signature and judge the window.

        Args:
            signature: ActionSignature of the action about to run

        Returns:
            Verdict.LOOP when the oracle is not converging
        """
        self._recent.append(signature)

        count = self._recent.count(signature)
        if count >= self.repeat_threshold:
            logger.warning("Action repeated %d times: %s", count, signature)
            return Verdict.LOOP

        if len(self._recent) >= 4:
            a, b, c, d = list(self._recent)[-4:]
            if a == c and b == d and a != b:
                logger.warning("Oscillation detected: %s <-> %s", a, b)
                return Verdict.LOOP

        return Verdict.OK

    def reset(self) -> None:
        self._recent.clear()

    @property
    def recent(self) -> list[str]:
        return list(self._recent)
