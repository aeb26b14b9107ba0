"""
Unit tests for the LEARNED/SPEC block parser.
"""

from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from site_memory.knowledge.block_parser import (
    parse_learned_blocks, parse_spec_blocks, parse_knowledge_blocks,
    strip_knowledge_blocks, dedent_lines
)


class TestLearnedBlocks:
    """Test parsing of LEARNED blocks."""

    def test_basic_round_trip(self):
        """Test that a formatted LEARNED block yields title, content and type."""
        text = "Done.\n<!--LEARNED\ntype: issue\nissue: X\nsolution: Y\n-->"

        blocks = parse_learned_blocks(text)

        assert len(blocks) == 1
        assert blocks[0].title == "X"
        assert blocks[0].content == "Y"
        assert blocks[0].type == "issue"

    def test_default_type_is_issue(self):
        """Test that LEARNED blocks default to the issue type."""
        blocks = parse_learned_blocks("<!--LEARNED\nissue: Banner covers button\nsolution: Close it\n-->")

        assert blocks[0].type == "issue"

    def test_optional_fields(self):
        """Test domain, path and selector lines."""
        text = (
            "<!--LEARNED\n"
            "domain: shop.example\n"
            "path: /checkout\n"
            "issue: Pay button hidden\n"
            "solution: Scroll first\n"
            "selector: button[data-testid=\"pay\"]\n"
            "-->"
        )

        block = parse_learned_blocks(text)[0]

        assert block.domain == "shop.example"
        assert block.path == "/checkout"
        assert block.selector == 'button[data-testid="pay"]'

    def test_context_any_maps_to_wildcard(self):
        """Test that the legacy context key maps to path."""
        any_block = parse_learned_blocks("<!--LEARNED\nissue: A\nsolution: B\ncontext: any\n-->")[0]
        path_block = parse_learned_blocks("<!--LEARNED\nissue: A\nsolution: B\ncontext: /cart\n-->")[0]

        assert any_block.path == "*"
        assert path_block.path == "/cart"

    def test_missing_title_dropped(self):
        """Test that a block without an issue/title is skipped."""
        assert parse_learned_blocks("<!--LEARNED\nsolution: orphan\n-->") == []

    def test_value_with_colon_kept_whole(self):
        """Test that only the first colon separates key and value."""
        block = parse_learned_blocks("<!--LEARNED\nissue: Login: 2FA prompt\nsolution: Use https://x/y\n-->")[0]

        assert block.title == "Login: 2FA prompt"
        assert block.content == "Use https://x/y"


class TestSpecBlocks:
    """Test parsing of SPEC blocks."""

    def test_multiline_content(self):
        """Test that 'content: |' captures the indented lines that follow."""
        text = (
            "<!--SPEC\n"
            "type: dom\n"
            "description: Checkout flow\n"
            "content: |\n"
            "  1. Click [data-testid=\"cart\"]\n"
            "  2. Click \"Proceed\"\n"
            "     then wait\n"
            "-->"
        )

        block = parse_spec_blocks(text)[0]

        assert block.title == "Checkout flow"
        assert block.type == "dom"
        assert block.content == '1. Click [data-testid="cart"]\n2. Click "Proceed"\n   then wait'

    def test_default_type_is_dom(self):
        """Test that SPEC blocks default to the dom type."""
        block = parse_spec_blocks("<!--SPEC\ndescription: Search box\ncontent: #q\n-->")[0]

        assert block.type == "dom"
        assert block.content == "#q"

    def test_goal_is_legacy_title(self):
        """Test that the legacy goal key is accepted as a title."""
        block = parse_spec_blocks("<!--SPEC\ngoal: Log in\ncontent: use SSO\n-->")[0]

        assert block.title == "Log in"

    def test_unmatched_lines_become_content(self):
        """Test that free lines are used as content when no content key is given."""
        block = parse_spec_blocks("<!--SPEC\ndescription: Notes\n  first line\n  second line\n-->")[0]

        assert block.content == "first line\nsecond line"


class TestKnowledgeBlocks:
    """Test combined parsing and stripping."""

    TEXT = (
        "Here is what I found.\n"
        "<!--LEARNED\nissue: Popup\nsolution: Press Escape\n-->\n"
        "More text.\n"
        "<!--SPEC\ndescription: Search API\ntype: api\ncontent: GET /api/search?q=\n-->\n"
        "The end."
    )

    def test_learned_before_spec(self):
        """Test that all LEARNED blocks come before SPEC blocks."""
        blocks = parse_knowledge_blocks(self.TEXT)

        assert [b.title for b in blocks] == ["Popup", "Search API"]
        assert blocks[1].type == "api"

    def test_strip_removes_both_blocks(self):
        """Test that stripping leaves no block and no dangling delimiter."""
        stripped = strip_knowledge_blocks(self.TEXT)

        assert "<!--" not in stripped
        assert "-->" not in stripped
        assert "LEARNED" not in stripped
        assert stripped == "Here is what I found.\nMore text.\nThe end."

    def test_empty_input(self):
        """Test that empty or missing text yields nothing."""
        assert parse_knowledge_blocks("") == []
        assert strip_knowledge_blocks(None) == ""


class TestDedentLines:
    """Test common-indent removal."""

    def test_removes_smallest_indent(self):
        """Test that the minimum indent of non-blank lines is removed."""
        assert dedent_lines(["    a", "      b", "", "    c"]) == "a\n  b\n\nc"

    def test_all_blank(self):
        """Test that blank-only input gives an empty string."""
        assert dedent_lines(["", "   "]) == ""
