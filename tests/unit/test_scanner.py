"""
Unit tests for markform/scanner.py and markform/syntax.py - tag scanning and syntax styles
"""
import pytest

from markform.errors import ParseError
from markform.model import SyntaxStyle
from markform.scanner import scan_tags
from markform.syntax import (
    detect_syntax_style,
    find_code_ranges,
    markdoc_to_comments,
    normalize_to_markdoc,
)


class TestScanTags:
    """Test scan_tags tree building."""

    def test_nested_tags_with_offsets(self):
        """Test children are nested and spans cover the tags exactly."""
        text = '{% form id="f" %}\n{% field kind="string" id="a" label="A" %}{% /field %}\n{% /form %}'
        roots = scan_tags(text)
        assert len(roots) == 1
        form = roots[0]
        assert form.name == "form"
        assert form.attributes == {"id": "f"}
        assert text[form.start:form.open_end] == '{% form id="f" %}'
        assert text[form.close_start:form.end] == "{% /form %}"

        assert len(form.children) == 1
        field = form.children[0]
        assert field.attributes["label"] == "A"
        assert field.line == 2
        assert field.inner_text(text) == ""

    def test_attribute_value_types(self):
        """Test strings, numbers, booleans, null, arrays and objects."""
        text = (
            '{% field a="x \\"q\\"" b=3 c=2.5 d=true e=false f=null '
            'g=["s", 1] h={type: "year", required: true} %}{% /field %}'
        )
        attrs = scan_tags(text)[0].attributes
        assert attrs["a"] == 'x "q"'
        assert attrs["b"] == 3 and isinstance(attrs["b"], int)
        assert attrs["c"] == 2.5
        assert attrs["d"] is True
        assert attrs["e"] is False
        assert attrs["f"] is None
        assert attrs["g"] == ["s", 1]
        assert attrs["h"] == {"type": "year", "required": True}

    def test_self_closing_tag(self):
        """Test self-closing tags have no body."""
        roots = scan_tags('{% form id="f" %}{% note id="n1" /%}{% /form %}')
        note = roots[0].children[0]
        assert note.self_closing
        assert note.inner_text("") == ""

    def test_option_annotations_are_not_tags(self):
        """Test {% #id %} annotations are skipped."""
        text = '{% field id="x" %}\n- [ ] One {% #one %}\n{% /field %}'
        roots = scan_tags(text)
        assert roots[0].children == []

    def test_tags_inside_code_are_ignored(self):
        """Test fenced and inline code hide tag-like text."""
        text = (
            "```\n{% field id=\"hidden\" %}\n```\n"
            "Use `{% form %}` to start.\n"
            '{% form id="real" %}{% /form %}'
        )
        roots = scan_tags(text)
        assert [node.attributes.get("id") for node in roots] == ["real"]

    # ========================================================================
    # Errors
    # ========================================================================

    def test_unclosed_tag(self):
        """Test an unclosed tag is reported with its location."""
        with pytest.raises(ParseError) as exc_info:
            scan_tags('\n{% form id="f" %}')
        assert "Unclosed tag 'form'" in str(exc_info.value)
        assert exc_info.value.line == 2

    def test_mismatched_closing_tag(self):
        """Test closing the wrong tag."""
        with pytest.raises(ParseError, match="Mismatched closing tag 'group'"):
            scan_tags('{% form id="f" %}{% /group %}')

    def test_unexpected_closing_tag(self):
        with pytest.raises(ParseError, match="Unexpected closing tag"):
            scan_tags("{% /form %}")

    def test_duplicate_attribute(self):
        with pytest.raises(ParseError, match="Duplicate attribute 'id'"):
            scan_tags('{% form id="a" id="b" %}{% /form %}')

    def test_line_offset_applied(self):
        """Test frontmatter lines shift reported line numbers."""
        with pytest.raises(ParseError) as exc_info:
            scan_tags('{% form id="f" %}', line_offset=5)
        assert exc_info.value.line == 6


class TestSyntaxStyles:
    """Test Markdoc / HTML-comment detection and conversion."""

    def test_detect_markdoc(self):
        assert detect_syntax_style('{% form id="f" %}{% /form %}') == SyntaxStyle.MARKDOC

    def test_detect_comment(self):
        assert detect_syntax_style('<!-- f:form id="f" --><!-- /f:form -->') == SyntaxStyle.HTML_COMMENT

    def test_detect_ignores_code(self):
        """Test markers inside code do not decide the style."""
        text = '`{% form %}`\n<!-- f:form id="f" --><!-- /f:form -->'
        assert detect_syntax_style(text) == SyntaxStyle.HTML_COMMENT

    def test_normalize_comment_tags(self):
        """Test open, close and annotation comments become Markdoc."""
        text = '<!-- f:field id="c" -->\n- [ ] Red <!-- #red -->\n<!-- /f:field -->'
        assert normalize_to_markdoc(text) == '{% field id="c" %}\n- [ ] Red {% #red %}\n{% /field %}'

    def test_markdoc_to_comments_inverse(self):
        """Test conversion back to comments restores the original text."""
        text = '<!-- f:form id="s" -->\n\n- [x] Blue <!-- #blue -->\n<!-- /f:form -->\n'
        assert markdoc_to_comments(normalize_to_markdoc(text)) == text

    def test_conversion_leaves_code_untouched(self):
        """Test code blocks are copied verbatim in both directions."""
        text = '```\n<!-- f:form -->\n```\n<!-- f:form id="s" --><!-- /f:form -->'
        normalized = normalize_to_markdoc(text)
        assert normalized.startswith("```\n<!-- f:form -->\n```\n")
        assert normalized.endswith('{% form id="s" %}{% /form %}')

    def test_find_code_ranges(self):
        """Test fences and inline spans are both reported."""
        text = "a `b` c\n```\nx\n```\n"
        ranges = find_code_ranges(text)
        assert (2, 5) in ranges
        assert ranges[-1] == (8, len(text))
