from __future__ import annotations

from abslot.features.page.document import Document

HTML = """
<html><body>
  <nav><a class="btn primary" href="/apply">Apply</a></nav>
  <button class="btn-primary"><span class="icon">*</span> Start now </button>
  <button class="btn-primary"><span class="icon">*</span> Start now </button>
  <!-- comment --><div id="host"></div>
</body></html>
"""


def test_same_tag_yields_same_element() -> None:
    doc = Document.from_html(HTML)

    a1 = doc.query_selector("nav a")
    a2 = doc.query_selector_all("a.btn")[0]

    assert a1 is a2


def test_identical_markup_stays_distinct() -> None:
    doc = Document.from_html(HTML)

    b1, b2 = doc.query_selector_all("button.btn-primary")

    assert b1 is not b2
    assert len({id(b1), id(b2)}) == 2


def test_attributes_and_class_list() -> None:
    doc = Document.from_html(HTML)
    a = doc.query_selector("nav a")

    assert a.tag_name == "a"
    assert a.class_list == ["btn", "primary"]
    assert a.get_attribute("class") == "btn primary"
    assert a.get_attribute("missing") is None

    a.set_attribute("data-ab-applied", "1")
    assert a.has_attribute("data-ab-applied")
    a.remove_attribute("data-ab-applied")
    assert not a.has_attribute("data-ab-applied")


def test_text_nodes_are_direct_children_only() -> None:
    doc = Document.from_html(HTML)
    button = doc.query_selector("button")

    nodes = button.text_nodes()

    assert [n.strip() for n in nodes] == ["Start now"]


def test_append_html_notifies_observers_with_added_elements() -> None:
    doc = Document.from_html(HTML)
    records = []
    doc.observe(records.append)

    added = doc.append_html('<button id="nextBtn">Next</button>', parent_selector="#host")

    assert len(records) == 1
    assert records[0].added == added
    assert doc.get_element_by_id("nextBtn") is added[0]


def test_disconnect_stops_notifications() -> None:
    doc = Document.from_html(HTML)
    records = []
    sub = doc.observe(records.append)

    sub.disconnect()
    sub.disconnect()
    doc.append_html("<a href='#'>x</a>")

    assert records == []
    assert doc.observer_count == 0


def test_remove_notifies_removed_element() -> None:
    doc = Document.from_html(HTML)
    records = []
    doc.observe(records.append)
    a = doc.query_selector("nav a")

    doc.remove(a)

    assert records[0].removed == [a]
    assert doc.query_selector("nav a") is None


def test_listener_errors_do_not_escape_click() -> None:
    doc = Document.from_html(HTML)
    a = doc.query_selector("nav a")
    seen = []

    def boom(_el):
        raise RuntimeError("listener bug")

    a.add_event_listener("click", boom)
    a.add_event_listener("click", seen.append)

    a.click()

    assert seen == [a]
    assert a.listener_count("click") == 2


def test_scripts_expose_src_and_inline_text() -> None:
    doc = Document.from_html(
        '<script src="/static/ab-config.js"></script><script>window.x = 1;</script>'
    )

    scripts = doc.scripts()

    assert scripts[0].src == "/static/ab-config.js"
    assert "window.x" in scripts[1].text
