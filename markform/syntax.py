"""
Surface syntax handling.

Two tag syntaxes describe the same form model:

    {% field kind="string" id="name" %}{% /field %}          (Markdoc)
    <!-- f:field kind="string" id="name" --><!-- /f:field -->  (HTML comment)

The parser always works on Markdoc-style text; comment-style sources are
normalized first and serializer output is converted back. Fenced and
inline code are never rewritten.
"""

import bisect
import re
from typing import Callable, List, Pattern, Tuple

from .model import SyntaxStyle

_FENCE_OPEN_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")
_FENCE_CLOSE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})\s*$")
_INLINE_CODE_RE = re.compile(r"(?<!`)(`+)(?!`)(.+?)(?<!`)\1(?!`)")

_MARKDOC_MARKER_RE = re.compile(r"\{%")
_COMMENT_MARKER_RE = re.compile(r"<!--\s*/?f:")

_COMMENT_TAG_RE = re.compile(
    r"<!--(?P<ws>\s*)(?:(?P<close>/f:)|(?P<open>f:)|(?P<ann>#(?=[A-Za-z0-9_-]+\s*-->)))(?P<body>.*?)-->",
    re.DOTALL,
)
_MARKDOC_TAG_RE = re.compile(
    r"\{%(?P<ws>\s*)(?:(?P<close>/)|(?P<ann>#(?=[A-Za-z0-9_-]+\s*%\})))?(?P<body>.*?)%\}",
    re.DOTALL,
)


def find_code_ranges(text: str) -> List[Tuple[int, int]]:
    """Sorted ``(start, end)`` offsets of fenced blocks and inline code spans."""
    ranges: List[Tuple[int, int]] = []
    offset = 0
    fence = None
    fence_start = 0

    for line in text.splitlines(keepends=True):
        content = line.rstrip("\r\n")
        if fence is None:
            match = _FENCE_OPEN_RE.match(content)
            if match:
                fence = match.group(1)
                fence_start = offset
            else:
                for span in _INLINE_CODE_RE.finditer(content):
                    ranges.append((offset + span.start(), offset + span.end()))
        else:
            match = _FENCE_CLOSE_RE.match(content)
            if match and match.group(1)[0] == fence[0] and len(match.group(1)) >= len(fence):
                ranges.append((fence_start, offset + len(line)))
                fence = None
        offset += len(line)

    if fence is not None:
        # Unterminated fence runs to end of document
        ranges.append((fence_start, len(text)))
    return ranges


class CodeMask:
    """Fast "is this offset inside code?" lookups."""

    def __init__(self, text: str):
        self.ranges = find_code_ranges(text)
        self._starts = [start for start, _ in self.ranges]

    def range_at(self, offset: int):
        idx = bisect.bisect_right(self._starts, offset) - 1
        if idx >= 0:
            start, end = self.ranges[idx]
            if start <= offset < end:
                return start, end
        return None

    def contains(self, offset: int) -> bool:
        return self.range_at(offset) is not None


def detect_syntax_style(text: str) -> SyntaxStyle:
    """Style of whichever tag marker appears first outside code."""
    mask = CodeMask(text)
    first_markdoc = _first_outside_code(_MARKDOC_MARKER_RE, text, mask)
    first_comment = _first_outside_code(_COMMENT_MARKER_RE, text, mask)
    if first_comment is not None and (first_markdoc is None or first_comment < first_markdoc):
        return SyntaxStyle.HTML_COMMENT
    return SyntaxStyle.MARKDOC


def normalize_to_markdoc(text: str) -> str:
    """Rewrite comment-style tags as Markdoc tags."""
    def repl(match):
        ws, body = match.group("ws"), match.group("body")
        if match.group("close"):
            return "{%" + ws + "/" + body + "%}"
        if match.group("ann"):
            return "{%" + ws + "#" + body + "%}"
        return "{%" + ws + body + "%}"

    return _sub_outside_code(_COMMENT_TAG_RE, repl, text)


def markdoc_to_comments(text: str) -> str:
    """Rewrite Markdoc tags as comment-style tags (inverse of normalize_to_markdoc)."""
    def repl(match):
        ws, body = match.group("ws"), match.group("body")
        if match.group("close"):
            return "<!--" + ws + "/f:" + body + "-->"
        if match.group("ann"):
            return "<!--" + ws + "#" + body + "-->"
        return "<!--" + ws + "f:" + body + "-->"

    return _sub_outside_code(_MARKDOC_TAG_RE, repl, text)


def render_in_style(text: str, style: SyntaxStyle) -> str:
    if style == SyntaxStyle.HTML_COMMENT:
        return markdoc_to_comments(text)
    return text


def line_col(text: str, offset: int) -> Tuple[int, int]:
    """1-based line and column of ``offset``."""
    line = text.count("\n", 0, offset) + 1
    last_newline = text.rfind("\n", 0, offset)
    return line, offset - last_newline


def _first_outside_code(pattern: Pattern, text: str, mask: CodeMask):
    for match in pattern.finditer(text):
        if not mask.contains(match.start()):
            return match.start()
    return None


def _sub_outside_code(pattern: Pattern, repl: Callable, text: str) -> str:
    mask = CodeMask(text)
    pieces = []
    cursor = 0
    for start, end in mask.ranges:
        pieces.append(pattern.sub(repl, text[cursor:start]))
        pieces.append(text[start:end])
        cursor = end
    pieces.append(pattern.sub(repl, text[cursor:]))
    return "".join(pieces)
