from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from urllib.parse import urlsplit

from abslot.core.config import ContextConfig
from abslot.core.ids import TokenFactory
from abslot.core.logging import get_logger
from abslot.core.types import PageMeta, SessionContext
from abslot.features.page.service import Page
from abslot.features.page.storage import StorageError

logger = get_logger(__name__)

SESSION_COOKIE = "gfsr_sid"
VISITOR_KEY = "gfsr_vid"
SEEN_KEY = "ab_seen"
BUCKET_KEY = "ab_bucket"

UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")
HOME_PATHS = ("/", "/index.html")


class ContextProvider:
    """
    Derives visitor/session identity and page context from the host page.

    Storage is treated as unreliable: every read/write is guarded and a
    failure switches to an in-memory value that lives for this page load only.
    """

    def __init__(
        self,
        *,
        page: Page,
        cfg: ContextConfig,
        tokens: TokenFactory | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.page = page
        self.cfg = cfg
        self.tokens = tokens or TokenFactory()
        self.clock = clock
        self._memory: dict[str, str] = {}

    # ----- storage helpers -----
    def _read(self, key: str) -> str | None:
        try:
            return self.page.local_storage.get_item(key)
        except StorageError as e:
            logger.debug("storage_read_failed", extra={"reason": str(e), "feature": "context"})
            return None

    def _write(self, key: str, value: str) -> bool:
        try:
            self.page.local_storage.set_item(key, value)
            return True
        except StorageError as e:
            logger.debug("storage_write_failed", extra={"reason": str(e), "feature": "context"})
            return False

    def _durable_token(self, key: str, make: Callable[[], str]) -> str:
        existing = self._read(key)
        if existing:
            return existing
        if key in self._memory:
            return self._memory[key]
        created = make()
        if not self._write(key, created):
            self._memory[key] = created
        return created

    # ----- identity -----
    def session_id(self) -> str:
        existing = self.page.cookies.get(SESSION_COOKIE)
        if existing:
            return existing
        sid = self.tokens.random_id("sid")
        self.page.cookies.set(SESSION_COOKIE, sid)
        return sid

    def visitor_id(self) -> str:
        return self._durable_token(VISITOR_KEY, lambda: self.tokens.random_id("vid"))

    def bucket(self) -> str:
        return self._durable_token(BUCKET_KEY, self.tokens.token)

    def visitor_type(self) -> str:
        """
        First call on an origin marks it as seen; every later read is "returning".
        """
        if self._read(SEEN_KEY):
            return "returning"
        self._write(SEEN_KEY, "1")
        return "new"

    # ----- environment classification -----
    def device_type(self) -> str:
        if self.page.viewport_width < self.cfg.mobile_breakpoint_px:
            return "mobile"
        return "desktop"

    def traffic_source(self) -> str:
        if any(key.startswith("utm_") for key, _ in self.page.location.query):
            return "utm"

        ref = self.page.referrer
        if not ref:
            return "direct"
        try:
            ref_host = urlsplit(ref).netloc
        except ValueError:
            return "referral"
        if ref_host and ref_host == self.page.location.host:
            return "internal"
        return "referral"

    def page_path(self) -> str:
        loc = self.page.location
        return f"{loc.pathname}{loc.search}"

    def page_meta(self) -> PageMeta:
        path = self.page.location.pathname
        if "blog" in path:
            return PageMeta(page_type="blog", funnel_stage="blog")
        if path in HOME_PATHS:
            return PageMeta(page_type="home", funnel_stage="leadflow")
        return PageMeta(page_type="info", funnel_stage="info")

    def step_index(self) -> str:
        """
        Live read of the multi-step form position; never cached because the
        form advances between bind and click.
        """
        if self.page.location.pathname not in HOME_PATHS:
            return "0"

        step = self.page.host_globals.get("step")
        if isinstance(step, int | float) and not isinstance(step, bool):
            return str(int(step))

        pane = self.page.document.query_selector(".step-pane:not([hidden])")
        if pane is not None:
            value = pane.get_attribute("data-step")
            if value:
                return str(value)
        return "0"

    def derive_context(self) -> SessionContext:
        return SessionContext(
            device_type=self.device_type(),
            visitor_type=self.visitor_type(),
            bucket=self.bucket(),
            traffic_source=self.traffic_source(),
            time_bucket=str(self.clock().hour),
            page_path=self.page_path(),
            session_id=self.session_id(),
            visitor_id=self.visitor_id(),
        )
