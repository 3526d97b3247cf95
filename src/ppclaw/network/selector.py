"""
Relay Selector - weighted random relay choice with failure exclusion.

Relays that recently failed are skipped. When every relay has failed,
the failure set is cleared (all relays are considered recoverable again)
and the first relay in the directory is returned.
"""

from __future__ import annotations

import logging
import random
from typing import Optional, Sequence, Set

from .discovery import RelayInfo

logger = logging.getLogger(__name__)


class RelaySelector:
    """
    Picks one relay per connection attempt.

    The probability of picking an eligible relay is proportional to its
    weight among the eligible relays.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        """
        Initialize the RelaySelector.

        Args:
            rng: Random source (a fresh ``random.Random`` when omitted)
        """
        self._rng = rng or random.Random()

    def pick(self, relays: Sequence[RelayInfo], failed: Set[str]) -> Optional[RelayInfo]:
        """
        Select a relay.

        Args:
            relays: Relay snapshot, in directory order
            failed: Ids of relays considered unusable. Cleared in place when
                it excludes every relay.

        Returns:
            Selected RelayInfo, or None if ``relays`` is empty
        """
        eligible = [r for r in relays if r.relay_id not in failed]

        if not eligible:
            if failed:
                logger.info(
                    f"All {len(relays)} relays marked failed, resetting failure list"
                )
            failed.clear()
            return relays[0] if relays else None

        total_weight = sum(r.weight for r in eligible)
        if total_weight <= 0:
            return eligible[0]

        remaining = self._rng.random() * total_weight
        for relay in eligible:
            remaining -= relay.weight
            if remaining <= 0:
                return relay

        # Float rounding can leave a tiny positive remainder
        return eligible[0]
