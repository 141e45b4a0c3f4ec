from __future__ import annotations

from collections.abc import Iterable

from abslot.core.config import CatalogConfig, SiteConfig
from abslot.core.logging import get_logger
from abslot.core.types import PageMeta
from abslot.features.page.document import Document, Element

from .types import (
    APPLIED_ATTR,
    BLOG_SCOPES,
    CLICK_ATTR,
    ELIGIBLE_TAGS,
    KNOWN_SCOPES,
    SLOT_ATTR,
    TRACK_ATTR,
    SlotDescriptor,
)

logger = get_logger(__name__)

NAV_CTA_SELECTOR = 'nav a.btn.primary.cta-unlock[href="/#leadForm"]'
FORM_NEXT_ID = "nextBtn"
FORM_SUBMIT_ID = "submitBtn"
LEAD_ANCHOR_SELECTOR = 'a[href*="#leadForm"]'
PRIMARY_SELECTOR = "a.btn.primary, a.btn.btn-primary, a.lead-cta-button, button.btn-primary"
BLOG_END_SELECTOR = ".cta-section a.cta-button, .cta-section button.cta-button"
BLOG_MID_SELECTOR = ".mid-article-cta a.cta-button, .mid-article-cta button.cta-button"

# Heuristic fallback vocabulary
CTA_KEYWORDS = ("help", "relief", "qualify", "eligibility", "check", "now", "start", "reduce")
CTA_TOKENS = ("cta", "start", "relief", "hero", "button")
PRIMARY_TOKENS = ("btn", "primary")

AB_CONFIG_MARKER = "/ab-config"


def _contains_any(value: str, tokens: Iterable[str]) -> bool:
    lower = (value or "").lower()
    return any(token in lower for token in tokens)


def heuristic_kind(el: Element) -> str | None:
    """
    Ordinal family for an unclassified link/button, or None when it does not look like a CTA.
    """
    href = (el.get_attribute("href") or "").strip().lower()
    if el.tag_name == "a" and href.startswith("tel:"):
        return "tel_link"
    if any(_contains_any(c, PRIMARY_TOKENS) for c in el.class_list):
        return "primary_btn"
    if (
        _contains_any(el.text_content, CTA_KEYWORDS)
        or _contains_any(" ".join(el.class_list), CTA_TOKENS)
        or _contains_any(el.id, CTA_TOKENS)
    ):
        return "cta_link"
    return None


class _ScanPass:
    """Accumulator for one discovery pass; dedups by element identity."""

    def __init__(self, test_id_prefix: str) -> None:
        self.test_id_prefix = test_id_prefix
        self.slots: list[SlotDescriptor] = []
        self._seen: set[int] = set()

    def add(
        self,
        el: Element | None,
        scope: str,
        *,
        clickable: bool = True,
        track_exposure: bool = False,
        verbatim: bool = False,
    ) -> bool:
        if el is None:
            return False
        if not verbatim and scope not in KNOWN_SCOPES:
            logger.debug("unknown_scope_dropped", extra={"scope": scope, "feature": "catalog"})
            return False
        if el.tag_name not in ELIGIBLE_TAGS:
            return False
        if id(el) in self._seen or el.get_attribute(APPLIED_ATTR) == "1":
            return False

        self._seen.add(id(el))
        test_id = scope if verbatim else f"{self.test_id_prefix}_{scope}"
        self.slots.append(
            SlotDescriptor(
                element=el,
                scope=scope,
                test_id=test_id,
                clickable=clickable,
                track_exposure=track_exposure,
            )
        )
        return True


class SlotCatalog:
    """
    Scans the document for CTA slots, in order:
      1. explicit [data-ab-slot] opt-ins
      2. page-type structural selectors
      3. (optional) ordinal heuristic for anything CTA-looking that is left
    """

    def __init__(self, *, document: Document, site: SiteConfig, cfg: CatalogConfig) -> None:
        self.document = document
        self.site = site
        self.cfg = cfg

    def has_embedded_blog_config(self) -> bool:
        """
        Blog articles can ship their own A/B config script for the blog slots;
        those slots are then left to that script.
        """
        if self.document.query_selector(
            f'[{SLOT_ATTR}="blog_mid_segue"], [{SLOT_ATTR}="blog_end_cta"]'
        ) is None:
            return False

        markers = [AB_CONFIG_MARKER]
        if self.site.api_base:
            markers.append(self.site.api_base)
            markers.append(self.site.api_base.rstrip("/").rsplit("/", 1)[-1])
        markers = [m for m in markers if m]

        return any(
            _contains_any(script.text, markers) or _contains_any(script.src, markers)
            for script in self.document.scripts()
        )

    def discover(self, meta: PageMeta) -> list[SlotDescriptor]:
        scan = _ScanPass(self.site.test_id_prefix)
        blog_config = meta.page_type == "blog" and self.has_embedded_blog_config()

        for el in self.document.query_selector_all(f"[{SLOT_ATTR}]"):
            scope = el.get_attribute(SLOT_ATTR)
            if not scope:
                continue
            if blog_config and scope in BLOG_SCOPES:
                continue
            scan.add(
                el,
                scope,
                clickable=el.get_attribute(CLICK_ATTR) != "false",
                track_exposure=el.get_attribute(TRACK_ATTR) == "exposure",
            )

        if meta.page_type == "blog":
            if not blog_config:
                for el in self.document.query_selector_all(BLOG_END_SELECTOR):
                    scan.add(el, "blog_end_cta")
                for el in self.document.query_selector_all(BLOG_MID_SELECTOR):
                    scan.add(el, "blog_mid_segue")
        else:
            for el in self.document.query_selector_all(NAV_CTA_SELECTOR):
                scan.add(el, "nav_cta")

            scan.add(self.document.get_element_by_id(FORM_NEXT_ID), "form_next")
            scan.add(self.document.get_element_by_id(FORM_SUBMIT_ID), "form_submit")

            for el in self.document.query_selector_all(LEAD_ANCHOR_SELECTOR):
                if el.has_attribute(SLOT_ATTR):
                    continue
                scan.add(el, "lead_anchor")

            for el in self.document.query_selector_all(PRIMARY_SELECTOR):
                if el.has_attribute(SLOT_ATTR):
                    continue
                scan.add(el, "homepage_buttons")

        if self.cfg.heuristic_fallback:
            self._add_heuristic(scan, meta)

        return scan.slots

    def _add_heuristic(self, scan: _ScanPass, meta: PageMeta) -> None:
        # ordinals count every candidate in document order, bound or not,
        # so a given element keeps its name across passes
        counters: dict[str, int] = {}
        for el in self.document.query_selector_all("a, button"):
            if el.has_attribute(SLOT_ATTR):
                continue
            kind = heuristic_kind(el)
            if kind is None:
                continue
            counters[kind] = counters.get(kind, 0) + 1
            ordinal = f"{kind}_{counters[kind]}"
            scope = f"{self.site.name}_{meta.page_type}_{ordinal}".lower()
            scan.add(el, scope, verbatim=True)
