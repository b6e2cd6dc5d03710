"""Single-holder guard tokens for operations that must never overlap."""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

_token_ids = itertools.count(1)


@dataclass(frozen=True)
class GuardToken:
    """Proof of holding a guard; only the holder can release it."""

    name: str
    token_id: int


class InFlightGuard:
    """At most one outstanding token at a time.

    Unlike ``asyncio.Lock`` a second caller is never queued: ``try_acquire``
    returns ``None`` immediately so duplicate intents become no-ops.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._holder: Optional[GuardToken] = None

    @property
    def busy(self) -> bool:
        return self._holder is not None

    def try_acquire(self) -> Optional[GuardToken]:
        if self._holder is not None:
            logger.debug("Guard %s busy (held by token %s)", self.name, self._holder.token_id)
            return None
        self._holder = GuardToken(self.name, next(_token_ids))
        return self._holder

    def release(self, token: GuardToken) -> None:
        if token != self._holder:
            # stale or foreign token; the current holder keeps the guard
            logger.debug("Guard %s: ignoring release of token %s", self.name, token.token_id)
            return
        self._holder = None


__all__ = ["GuardToken", "InFlightGuard"]
