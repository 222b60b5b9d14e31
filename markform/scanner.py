"""
Markdoc-style tag scanner.

Turns ``{% name attr=value %} ... {% /name %}`` markup into a tree of
TagNode objects with exact source offsets. Tags inside fenced or inline
code are ignored, as are option annotations (``{% #id %}``), which the
field parsers read from the raw field body.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ParseError
from .syntax import CodeMask, line_col

_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")
_KEY_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?")
_ESCAPES = {'"': '"', "\\": "\\", "n": "\n", "t": "\t"}


@dataclass
class TagNode:
    """One tag with its source span."""
    name: str
    attributes: Dict[str, Any]
    start: int
    open_end: int
    close_start: int = -1
    end: int = -1
    line: int = 1
    column: int = 1
    self_closing: bool = False
    children: List["TagNode"] = field(default_factory=list)

    def inner_text(self, source: str) -> str:
        if self.self_closing:
            return ""
        return source[self.open_end:self.close_start]


def scan_tags(text: str, line_offset: int = 0) -> List[TagNode]:
    """
    Scan ``text`` and return the top-level tag nodes.

    Args:
        text: Markdoc-style source (already normalized)
        line_offset: Lines preceding ``text`` in the document, for error locations

    Raises:
        ParseError: On unterminated, unclosed or mismatched tags and bad attributes
    """
    mask = CodeMask(text)
    roots: List[TagNode] = []
    stack: List[TagNode] = []
    pos = 0

    while True:
        idx = text.find("{%", pos)
        if idx < 0:
            break
        code = mask.range_at(idx)
        if code is not None:
            pos = code[1]
            continue

        end = _find_tag_end(text, idx + 2)
        if end < 0:
            raise _error("Unterminated tag", text, idx, line_offset)
        content = text[idx + 2:end].strip()
        tag_end = end + 2
        pos = tag_end

        if content.startswith("#"):
            continue

        if content.startswith("/"):
            name = content[1:].strip()
            if not stack:
                raise _error(f"Unexpected closing tag '{name}'", text, idx, line_offset)
            node = stack.pop()
            if node.name != name:
                raise _error(
                    f"Mismatched closing tag '{name}', expected '{node.name}'",
                    text, idx, line_offset,
                )
            node.close_start = idx
            node.end = tag_end
            continue

        self_closing = content.endswith("/")
        if self_closing:
            content = content[:-1].rstrip()
        name_match = _NAME_RE.match(content)
        if not name_match:
            raise _error(f"Invalid tag name in '{{%{content}%}}'", text, idx, line_offset)
        name = name_match.group(0)
        attr_base = idx + 2 + text[idx + 2:end].find(content) + name_match.end()
        attributes = _AttributeParser(
            content[name_match.end():], text, attr_base, line_offset
        ).parse()

        line, column = line_col(text, idx)
        node = TagNode(
            name=name,
            attributes=attributes,
            start=idx,
            open_end=tag_end,
            line=line + line_offset,
            column=column,
            self_closing=self_closing,
        )
        if self_closing:
            node.close_start = tag_end
            node.end = tag_end

        (stack[-1].children if stack else roots).append(node)
        if not self_closing:
            stack.append(node)

    if stack:
        node = stack[-1]
        raise ParseError(f"Unclosed tag '{node.name}'", line=node.line, column=node.column)
    return roots


def _find_tag_end(text: str, pos: int) -> int:
    in_string = False
    i = pos
    while i < len(text) - 1:
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "%" and text[i + 1] == "}":
            return i
        i += 1
    return -1


def _error(message: str, text: str, offset: int, line_offset: int) -> ParseError:
    line, column = line_col(text, offset)
    return ParseError(message, line=line + line_offset, column=column)


class _AttributeParser:
    """Parses ``key=value`` attribute lists."""

    def __init__(self, source: str, document: str, base: int, line_offset: int):
        self.source = source
        self.document = document
        self.base = base
        self.line_offset = line_offset
        self.pos = 0

    def parse(self) -> Dict[str, Any]:
        attrs: Dict[str, Any] = {}
        while True:
            self._skip_ws()
            if self.pos >= len(self.source):
                return attrs
            if self.source[self.pos] == "#":
                self.pos += 1
                attrs["id"] = self._expect(_NAME_RE, "identifier")
                continue
            key = self._expect(_KEY_RE, "attribute name")
            self._skip_ws()
            if not self._consume("="):
                raise self._fail(f"Expected '=' after attribute '{key}'")
            self._skip_ws()
            if key in attrs:
                raise self._fail(f"Duplicate attribute '{key}'")
            attrs[key] = self._value()

    def _value(self) -> Any:
        if self.pos >= len(self.source):
            raise self._fail("Missing attribute value")
        ch = self.source[self.pos]
        if ch == '"':
            return self._string()
        if ch == "[":
            return self._array()
        if ch == "{":
            return self._object()
        number = _NUMBER_RE.match(self.source, self.pos)
        if number:
            self.pos = number.end()
            text = number.group(0)
            return float(text) if any(c in text for c in ".eE") else int(text)
        word = _NAME_RE.match(self.source, self.pos)
        if word and word.group(0) in ("true", "false", "null"):
            self.pos = word.end()
            return {"true": True, "false": False, "null": None}[word.group(0)]
        raise self._fail("Invalid attribute value")

    def _string(self) -> str:
        self.pos += 1
        chars = []
        while self.pos < len(self.source):
            ch = self.source[self.pos]
            if ch == "\\" and self.pos + 1 < len(self.source):
                nxt = self.source[self.pos + 1]
                chars.append(_ESCAPES.get(nxt, nxt))
                self.pos += 2
                continue
            if ch == '"':
                self.pos += 1
                return "".join(chars)
            chars.append(ch)
            self.pos += 1
        raise self._fail("Unterminated string")

    def _array(self) -> List[Any]:
        self.pos += 1
        items = []
        while True:
            self._skip_ws()
            if self._consume("]"):
                return items
            items.append(self._value())
            self._skip_ws()
            if self._consume("]"):
                return items
            if not self._consume(","):
                raise self._fail("Expected ',' or ']' in array")

    def _object(self) -> Dict[str, Any]:
        self.pos += 1
        obj = {}
        while True:
            self._skip_ws()
            if self._consume("}"):
                return obj
            if self.source[self.pos:self.pos + 1] == '"':
                key = self._string()
            else:
                key = self._expect(_KEY_RE, "object key")
            self._skip_ws()
            if not self._consume(":"):
                raise self._fail(f"Expected ':' after key '{key}'")
            self._skip_ws()
            obj[key] = self._value()
            self._skip_ws()
            if self._consume("}"):
                return obj
            if not self._consume(","):
                raise self._fail("Expected ',' or '}' in object")

    def _skip_ws(self):
        while self.pos < len(self.source) and self.source[self.pos].isspace():
            self.pos += 1

    def _consume(self, token: str) -> bool:
        if self.source.startswith(token, self.pos):
            self.pos += len(token)
            return True
        return False

    def _expect(self, pattern, what: str) -> str:
        match = pattern.match(self.source, self.pos)
        if not match:
            raise self._fail(f"Expected {what}")
        self.pos = match.end()
        return match.group(0)

    def _fail(self, message: str) -> ParseError:
        return _error(message, self.document, self.base + self.pos, self.line_offset)
