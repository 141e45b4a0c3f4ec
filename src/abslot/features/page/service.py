from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, urlsplit

from .document import Document
from .storage import CookieJar, MemoryStorage, Storage


@dataclass(frozen=True)
class Location:
    href: str
    scheme: str
    host: str
    pathname: str
    search: str

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.host}"

    @property
    def query(self) -> list[tuple[str, str]]:
        return parse_qsl(self.search.lstrip("?"), keep_blank_values=True)

    @classmethod
    def parse(cls, url: str) -> Location:
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            raise ValueError(f"page url must be absolute: {url!r}")
        return cls(
            href=url,
            scheme=parts.scheme,
            host=parts.netloc,
            pathname=parts.path or "/",
            search=f"?{parts.query}" if parts.query else "",
        )


class Page:
    """
    The host window the engine runs in: location, referrer, viewport,
    durable per-origin storage, session cookies, host globals and the document.
    """

    def __init__(
        self,
        *,
        url: str,
        document: Document,
        referrer: str = "",
        viewport_width: int = 1280,
        local_storage: Storage | None = None,
        cookies: CookieJar | None = None,
        host_globals: dict[str, Any] | None = None,
    ) -> None:
        self.location = Location.parse(url)
        self.document = document
        self.referrer = referrer or ""
        self.viewport_width = int(viewport_width)
        self.local_storage: Storage = (
            local_storage if local_storage is not None else MemoryStorage()
        )
        self.cookies = cookies if cookies is not None else CookieJar()
        # e.g. {"step": 2} for the multi-step lead form
        self.host_globals: dict[str, Any] = dict(host_globals or {})

    @classmethod
    def from_html(cls, html: str, *, url: str, **kwargs: Any) -> Page:
        return cls(url=url, document=Document.from_html(html), **kwargs)
