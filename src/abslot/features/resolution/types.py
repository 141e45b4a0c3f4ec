from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from abslot.core.logging import get_logger
from abslot.features.page.storage import Storage, StorageError

logger = get_logger(__name__)


@dataclass(frozen=True)
class VariantResponse:
    variant: str | None
    label: str | None
    correlation_id: str | None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class ScopeCacheEntry:
    """
    pending: the single in-flight (or settled, successful) lookup for the scope.
    variant/label: last known values, kept even if a later lookup fails.
    """

    pending: asyncio.Task | None = None
    variant: str | None = None
    label: str | None = None


class CorrelationState:
    """
    Correlation id issued by the resolution service, mirrored to durable storage
    under corr_key. Never generated locally.
    """

    def __init__(self, *, storage: Storage, corr_key: str) -> None:
        self.storage = storage
        self.corr_key = corr_key
        self.correlation_id: str | None = None

    def load(self) -> str | None:
        try:
            self.correlation_id = self.storage.get_item(self.corr_key) or None
        except StorageError as e:
            logger.debug("correlation_read_failed", extra={"reason": str(e)})
            self.correlation_id = None
        return self.correlation_id

    def update(self, correlation_id: str | None) -> None:
        if not correlation_id:
            return
        self.correlation_id = correlation_id
        try:
            self.storage.set_item(self.corr_key, correlation_id)
        except StorageError as e:
            logger.debug("correlation_write_failed", extra={"reason": str(e)})
