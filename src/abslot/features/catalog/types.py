from __future__ import annotations

from dataclasses import dataclass

from abslot.features.page.document import Element

KNOWN_SCOPES: frozenset[str] = frozenset(
    {
        "homepage_buttons",
        "blog_mid_segue",
        "blog_end_cta",
        "hero_headline",
        "nav_cta",
        "form_next",
        "form_submit",
        "lead_anchor",
    }
)

BLOG_SCOPES: frozenset[str] = frozenset({"blog_mid_segue", "blog_end_cta"})

ELIGIBLE_TAGS: frozenset[str] = frozenset({"a", "button"})

# DOM contract
SLOT_ATTR = "data-ab-slot"
TRACK_ATTR = "data-ab-track"
CLICK_ATTR = "data-ab-click"
APPLIED_ATTR = "data-ab-applied"


@dataclass(frozen=True, eq=False)
class SlotDescriptor:
    element: Element
    scope: str
    test_id: str
    clickable: bool = True
    track_exposure: bool = False
