from __future__ import annotations

import random
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field


def strong_token() -> str:
    # uuid4 reads os.urandom, which raises NotImplementedError without an entropy source
    return uuid.uuid4().hex


def composite_token() -> str:
    """
    Time + random composite, used when no strong random source is available.
    Not suitable for anything security related; only needs to be unlikely to collide.
    """
    millis = int(time.time() * 1000)
    return f"{random.getrandbits(48):012x}{millis:x}"


@dataclass(slots=True)
class TokenFactory:
    """
    Issues identity tokens (session, visitor, bucket).

    strong: the preferred generator; any NotImplementedError/OSError from it
    switches this factory to the composite fallback for the rest of the page load.
    """

    strong: Callable[[], str] = strong_token
    fallback: Callable[[], str] = composite_token
    _degraded: bool = field(default=False, init=False, repr=False)

    @property
    def degraded(self) -> bool:
        return self._degraded

    def token(self) -> str:
        if not self._degraded:
            try:
                return self.strong()
            except (NotImplementedError, OSError):
                self._degraded = True
        return self.fallback()

    def random_id(self, prefix: str) -> str:
        return f"{prefix}_{self.token()}"
