"""Tests for roadsync.adf."""

from roadsync.adf import adf_to_text, text_to_adf


def _text(value: str, **extra) -> dict:
    return {"type": "text", "text": value, **extra}


def _paragraph(*content: dict) -> dict:
    return {"type": "paragraph", "content": list(content)}


def _doc(*content: dict) -> dict:
    return {"type": "doc", "version": 1, "content": list(content)}


class TestAdfToText:
    def test_empty_inputs(self) -> None:
        assert adf_to_text(None) == ""
        assert adf_to_text(42) == ""  # type: ignore[arg-type]
        assert adf_to_text(_doc()) == ""

    def test_plain_string_passes_through(self) -> None:
        assert adf_to_text("already text") == "already text"

    def test_paragraphs(self) -> None:
        doc = _doc(_paragraph(_text("First")), _paragraph(_text("Second ", marks=[{"type": "strong"}]), _text("part")))
        assert adf_to_text(doc) == "First\nSecond part"

    def test_heading_and_hard_break(self) -> None:
        doc = _doc(
            {"type": "heading", "attrs": {"level": 2}, "content": [_text("Goals")]},
            _paragraph(_text("one"), {"type": "hardBreak"}, _text("two")),
        )
        assert adf_to_text(doc) == "Goals\n\none\ntwo"

    def test_lists(self) -> None:
        doc = _doc(
            {
                "type": "bulletList",
                "content": [
                    {"type": "listItem", "content": [_paragraph(_text("alpha"))]},
                    {"type": "listItem", "content": [_paragraph(_text("beta"))]},
                ],
            },
            {
                "type": "orderedList",
                "attrs": {"order": 3},
                "content": [
                    {"type": "listItem", "content": [_paragraph(_text("gamma"))]},
                    {"type": "listItem", "content": [_paragraph(_text("delta"))]},
                ],
            },
        )
        text = adf_to_text(doc)
        assert "- alpha" in text
        assert "- beta" in text
        assert "3. gamma" in text
        assert "4. delta" in text

    def test_code_block(self) -> None:
        doc = _doc(_paragraph(_text("Run:")), {"type": "codeBlock", "content": [_text("make test")]})
        assert "make test" in adf_to_text(doc)

    def test_inline_nodes(self) -> None:
        doc = _doc(
            _paragraph(
                {"type": "mention", "attrs": {"id": "acc-1", "text": "@Jane"}},
                _text(" see "),
                {"type": "inlineCard", "attrs": {"url": "https://example.com/design"}},
                _text(" "),
                {"type": "emoji", "attrs": {"shortName": ":tada:"}},
            )
        )
        assert adf_to_text(doc) == "@Jane see https://example.com/design :tada:"

    def test_unknown_nodes_render_children(self) -> None:
        doc = _doc({"type": "panel", "attrs": {"panelType": "info"}, "content": [_paragraph(_text("Heads up"))]})
        assert adf_to_text(doc) == "Heads up"

    def test_collapses_blank_runs(self) -> None:
        doc = _doc(_paragraph(_text("a")), _paragraph(), _paragraph(), _paragraph(), _paragraph(_text("b")))
        assert "\n\n\n" not in adf_to_text(doc)


class TestTextToAdf:
    def test_empty(self) -> None:
        assert text_to_adf("") == _doc()
        assert text_to_adf(None) == _doc()

    def test_one_paragraph_per_line(self) -> None:
        assert text_to_adf("first\n\n  \nsecond") == _doc(_paragraph(_text("first")), _paragraph(_text("second")))

    def test_round_trip_keeps_paragraphs(self) -> None:
        assert adf_to_text(text_to_adf("first\nsecond")) == "first\nsecond"
