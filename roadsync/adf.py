"""Atlassian Document Format (ADF) <-> plain text.

The forward direction is a depth-first visitor that dispatches on each node's ``type`` and
appends fragments to a caller-supplied buffer. The reverse direction emits
one paragraph per non-blank line.
"""

import re
from collections.abc import Callable
from enum import StrEnum
from typing import Any

Node = dict[str, Any]


class NodeType(StrEnum):
    DOC = "doc"
    TEXT = "text"
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    HARD_BREAK = "hardBreak"
    LINE_BREAK = "lineBreak"
    BULLET_LIST = "bulletList"
    ORDERED_LIST = "orderedList"
    LIST_ITEM = "listItem"
    CODE_BLOCK = "codeBlock"
    MENTION = "mention"
    EMOJI = "emoji"
    INLINE_CARD = "inlineCard"


def _children(node: Node) -> list[Node]:
    content = node.get("content")
    return [child for child in content if isinstance(child, dict)] if isinstance(content, list) else []


def _visit_children(node: Node, out: list[str]) -> None:
    for child in _children(node):
        visit(child, out)


def _ensure_newline(out: list[str]) -> None:
    if out and not out[-1].endswith("\n"):
        out.append("\n")


def _visit_text(node: Node, out: list[str]) -> None:
    out.append(str(node.get("text", "")))


def _visit_break(node: Node, out: list[str]) -> None:
    out.append("\n")


def _visit_paragraph(node: Node, out: list[str]) -> None:
    _visit_children(node, out)
    out.append("\n")


def _visit_heading(node: Node, out: list[str]) -> None:
    _visit_children(node, out)
    out.append("\n\n")


def _visit_list(node: Node, out: list[str]) -> None:
    ordered = node.get("type") == NodeType.ORDERED_LIST
    start = (node.get("attrs") or {}).get("order", 1) if ordered else 1
    if not isinstance(start, int):
        start = 1
    for index, item in enumerate(_children(node)):
        out.append(f"{start + index}. " if ordered else "- ")
        visit(item, out)
        _ensure_newline(out)


def _visit_list_item(node: Node, out: list[str]) -> None:
    _visit_children(node, out)
    _ensure_newline(out)


def _visit_code_block(node: Node, out: list[str]) -> None:
    out.append("\n")
    _visit_children(node, out)
    out.append("\n")


def _visit_mention(node: Node, out: list[str]) -> None:
    out.append(str((node.get("attrs") or {}).get("text", "")))


def _visit_emoji(node: Node, out: list[str]) -> None:
    attrs = node.get("attrs") or {}
    out.append(str(attrs.get("text") or attrs.get("shortName", "")))


def _visit_inline_card(node: Node, out: list[str]) -> None:
    out.append(str((node.get("attrs") or {}).get("url", "")))


_VISITORS: dict[str, Callable[[Node, list[str]], None]] = {
    NodeType.TEXT: _visit_text,
    NodeType.HARD_BREAK: _visit_break,
    NodeType.LINE_BREAK: _visit_break,
    NodeType.PARAGRAPH: _visit_paragraph,
    NodeType.HEADING: _visit_heading,
    NodeType.BULLET_LIST: _visit_list,
    NodeType.ORDERED_LIST: _visit_list,
    NodeType.LIST_ITEM: _visit_list_item,
    NodeType.CODE_BLOCK: _visit_code_block,
    NodeType.MENTION: _visit_mention,
    NodeType.EMOJI: _visit_emoji,
    NodeType.INLINE_CARD: _visit_inline_card,
}


def visit(node: Node, out: list[str]) -> None:
    """Append the plain-text rendering of ``node`` to ``out``.

    ``doc`` and unknown node types fall through to their children.
    """
    handler = _VISITORS.get(node.get("type", ""), _visit_children)
    handler(node, out)


def adf_to_text(document: Any) -> str:
    if document is None:
        return ""
    if isinstance(document, str):
        return document
    if not isinstance(document, dict):
        return ""
    out: list[str] = []
    visit(document, out)
    return re.sub(r"\n{3,}", "\n\n", "".join(out)).strip()


def text_to_adf(text: str | None) -> Node:
    if not text:
        return {"type": NodeType.DOC.value, "version": 1, "content": []}
    paragraphs = [
        {"type": NodeType.PARAGRAPH.value, "content": [{"type": NodeType.TEXT.value, "text": line}]}
        for line in text.split("\n")
        if line.strip()
    ]
    return {"type": NodeType.DOC.value, "version": 1, "content": paragraphs}
