"""Markup parser.

Grammar:
    element ::= "<" tag attrs? ( "/>" | ">" content? "</" tag ">" )
    attrs   ::= ( name | name '="' escaped-value '"' )*

Closing tags are located with a depth-counting scan over same-named
open/close pairs, so a parent holding several same-named subtrees (or a
child sharing its parent's tag) resolves to the right closing tag.
"""

from __future__ import annotations

import html
import re

from roomagent.errors import ParseError
from roomagent.markup.node import FLAG, Content, MarkupNode, Text

_WHITESPACE = " \t\r\n"
_NAME_END = frozenset(_WHITESPACE + '/>="<')
_CLOSING_TAG = re.compile(r"</([^\s>]+)\s*>")


def parse(text: str) -> MarkupNode:
    """Parse a single element.

    Raises:
        ParseError: when the text is not one well-formed element.
    """
    source = text.strip()
    if not source.startswith("<"):
        raise ParseError("markup must start with '<'", 0)
    node, end = _parse_element(source, 0)
    if end != len(source):
        raise ParseError("unexpected content after root element", end)
    return node


def parse_fragment(text: str) -> list[MarkupNode]:
    """Parse a whitespace-separated sequence of sibling elements."""
    nodes: list[MarkupNode] = []
    pos = 0
    while True:
        pos = _skip_whitespace(text, pos)
        if pos >= len(text):
            return nodes
        if text[pos] != "<":
            raise ParseError("expected '<' between elements", pos)
        node, pos = _parse_element(text, pos)
        nodes.append(node)


def _skip_whitespace(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in _WHITESPACE:
        pos += 1
    return pos


def _read_name(text: str, pos: int) -> tuple[str, int]:
    start = pos
    while pos < len(text) and text[pos] not in _NAME_END:
        pos += 1
    return text[start:pos], pos


def _parse_element(text: str, pos: int) -> tuple[MarkupNode, int]:
    tag, pos = _read_name(text, pos + 1)
    if not tag:
        raise ParseError("missing tag name", pos)

    attributes: dict[str, str | bool] = {}
    while True:
        pos = _skip_whitespace(text, pos)
        if pos >= len(text):
            raise ParseError(f"missing '>' for <{tag}>", pos)
        if text.startswith("/>", pos):
            return MarkupNode(tag, attributes), pos + 2
        if text[pos] == ">":
            pos += 1
            break

        name, pos = _read_name(text, pos)
        if not name:
            raise ParseError(f"unexpected {text[pos]!r} in <{tag}>", pos)
        if pos < len(text) and text[pos] == "=":
            pos += 1
            if pos >= len(text) or text[pos] != '"':
                raise ParseError(f"unquoted value for attribute '{name}' in <{tag}>", pos)
            close = text.find('"', pos + 1)
            if close == -1:
                raise ParseError(f"unterminated value for attribute '{name}' in <{tag}>", pos)
            attributes[name] = html.unescape(text[pos + 1 : close])
            pos = close + 1
        else:
            attributes[name] = FLAG

    close_start, after = _find_closing_tag(text, tag, pos)
    content = _parse_content(text[pos:close_start])
    return MarkupNode(tag, attributes, content), after


def _at_name_boundary(text: str, pos: int) -> bool:
    return pos >= len(text) or text[pos] in _WHITESPACE or text[pos] in "/>"


def _scan_tag_end(text: str, pos: int) -> tuple[int, bool]:
    """Find the '>' ending the tag that started before pos, honoring quotes.

    Returns (index after '>', self_closing). An unterminated tag reports
    the end of text and self-closing so the depth is left alone.
    """
    quoted = False
    while pos < len(text):
        char = text[pos]
        if char == '"':
            quoted = not quoted
        elif char == ">" and not quoted:
            return pos + 1, text[pos - 1] == "/"
        pos += 1
    return len(text), True


def _find_closing_tag(text: str, tag: str, pos: int) -> tuple[int, int]:
    """Locate the </tag> matching an open tag whose content starts at pos.

    Returns (start of the closing tag, index after it).
    """
    open_token = f"<{tag}"
    close_token = f"</{tag}"
    depth = 1
    scan = pos
    while True:
        scan = text.find("<", scan)
        if scan == -1:
            break
        if text.startswith(close_token, scan) and _at_name_boundary(text, scan + len(close_token)):
            end = _skip_whitespace(text, scan + len(close_token))
            if end >= len(text) or text[end] != ">":
                raise ParseError(f"malformed closing tag for <{tag}>", scan)
            depth -= 1
            if depth == 0:
                return scan, end + 1
            scan = end + 1
        elif text.startswith(open_token, scan) and _at_name_boundary(text, scan + len(open_token)):
            scan, self_closing = _scan_tag_end(text, scan + len(open_token))
            if not self_closing:
                depth += 1
        else:
            scan += 1

    found = [m.group(1) for m in _CLOSING_TAG.finditer(text, pos)]
    if found and found[-1] != tag:
        raise ParseError(f"mismatched closing tag: expected </{tag}>, found </{found[-1]}>", pos)
    raise ParseError(f"missing closing tag </{tag}>", pos)


def _parse_content(inner: str) -> Content:
    if not inner:
        return None
    if inner.lstrip(_WHITESPACE).startswith("<"):
        return parse_fragment(inner)
    return Text(html.unescape(inner))
