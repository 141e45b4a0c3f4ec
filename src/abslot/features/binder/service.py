from __future__ import annotations

from collections.abc import Callable

from bs4 import NavigableString

from abslot.core.logging import get_logger
from abslot.features.catalog.types import APPLIED_ATTR, SlotDescriptor
from abslot.features.page.document import Element
from abslot.features.resolution.types import VariantResponse

logger = get_logger(__name__)

ARIA_LABEL_ATTR = "aria-label"

Tracker = Callable[[str, SlotDescriptor], object]


def apply_label(el: Element, label: str) -> None:
    """
    Swap the visible label, keeping icons/markup around it:
    first non-blank direct text node, else the first text node, else the whole content.
    aria-label always mirrors the visible text.
    """
    if not label:
        return
    nodes = el.text_nodes()
    target = next((n for n in nodes if n.strip()), nodes[0] if nodes else None)
    if target is not None:
        target.replace_with(NavigableString(label))
    else:
        el.set_text_content(label)
    el.set_attribute(ARIA_LABEL_ATTR, label)


def is_bound(el: Element) -> bool:
    return el.get_attribute(APPLIED_ATTR) == "1"


class LabelBinder:
    """
    Applies a resolved label to a slot once.

    Label precedence: label from this response > label cached for the scope.
    With neither, the slot is left exactly as rendered and stays eligible
    for the next rebind pass.
    """

    def __init__(self, *, cached_label: Callable[[str], str | None], track: Tracker) -> None:
        self.cached_label = cached_label
        self.track = track

    def pick_label(self, slot: SlotDescriptor, response: VariantResponse | None) -> str | None:
        if response is not None and response.label:
            return response.label
        return self.cached_label(slot.scope)

    def bind(self, slot: SlotDescriptor, response: VariantResponse | None) -> bool:
        el = slot.element
        if is_bound(el):
            return False

        label = self.pick_label(slot, response)
        if not label:
            return False

        apply_label(el, label)
        el.set_attribute(APPLIED_ATTR, "1")

        if slot.track_exposure:
            self.track("exposure", slot)
        if slot.clickable:
            el.add_event_listener("click", lambda _el: self.track("click", slot))

        logger.debug("slot_bound", extra={"scope": slot.scope, "event": "bind"})
        return True
