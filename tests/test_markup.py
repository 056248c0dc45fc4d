"""Tests for the markup module (node model, serializer and parser)."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from roomagent.errors import ParseError, ProtectedAttributeError
from roomagent.markup import (
    FLAG,
    MarkupNode,
    RoomEventNode,
    Text,
    TimestampedNode,
    escape,
    format_display_time,
    format_timestamp,
    parse,
    parse_fragment,
)

NESTED = (
    '<test test1="test2" test3="test4">\n'
    " <test5/>\n"
    " <test6>test7</test6>\n"
    " <test8>\n"
    '  <test9 test10="test11">test12</test9>\n'
    " </test8>\n"
    "</test>"
)


def nested_tree() -> MarkupNode:
    return MarkupNode(
        "test",
        {"test1": "test2", "test3": "test4"},
        [
            MarkupNode("test5"),
            MarkupNode("test6", content="test7"),
            MarkupNode("test8", content=[MarkupNode("test9", {"test10": "test11"}, "test12")]),
        ],
    )


# =============================================================================
# Serialization
# =============================================================================


class TestSerialize:
    """Tests for MarkupNode.serialize."""

    def test_nested_tree_layout(self) -> None:
        """Children go one per line, one space of indent per level."""
        assert nested_tree().serialize() == NESTED

    def test_empty_node_self_closes(self) -> None:
        """Nodes without content render as <tag/>."""
        assert MarkupNode("ping").serialize() == "<ping/>"
        assert MarkupNode("ping", content="").serialize() == "<ping/>"
        assert MarkupNode("ping", content=[]).serialize() == "<ping/>"

    def test_flag_attribute_is_bare(self) -> None:
        """Boolean attributes serialize as the bare name."""
        node = MarkupNode("window", {"windowId": "3", "pinned": FLAG})
        assert node.serialize() == '<window windowId="3" pinned/>'

    def test_escaping(self) -> None:
        """Text and attribute values are entity-escaped."""
        node = MarkupNode("m", {"q": 'say "hi"'}, "a < b & c > d")
        assert node.serialize() == '<m q="say &quot;hi&quot;">a &lt; b &amp; c &gt; d</m>'

    def test_raw_text_is_not_escaped(self) -> None:
        """Raw text is emitted verbatim."""
        node = MarkupNode("content", content=Text("<x/> & y", raw=True))
        assert node.serialize() == "<content><x/> & y</content>"

    def test_nesting_level_offsets_children(self) -> None:
        """A non-zero level indents children further and dedents the close tag to that level."""
        node = MarkupNode("a", content=[MarkupNode("b")])
        assert node.serialize(2) == "<a>\n   <b/>\n  </a>"

    def test_escape_helper(self) -> None:
        """escape() handles &, <, > and double quotes."""
        assert escape('&<>"') == "&amp;&lt;&gt;&quot;"


# =============================================================================
# Node model
# =============================================================================


class TestMarkupNode:
    """Tests for the MarkupNode model."""

    def test_string_content_becomes_text(self) -> None:
        """Plain strings are wrapped in Text."""
        node = MarkupNode("a", content="hello")
        assert node.content == Text("hello")
        assert node.text == "hello"
        assert node.children == []

    def test_assigned_string_becomes_text(self) -> None:
        """Assigning a string after construction wraps it in Text too."""
        node = MarkupNode("a")
        node.content = "x < y"
        assert node.content == Text("x < y")
        assert node.serialize() == "<a>x &lt; y</a>"

    def test_single_child_becomes_list(self) -> None:
        """A lone node as content becomes a one-element child list."""
        child = MarkupNode("b")
        node = MarkupNode("a", content=child)
        assert node.children == [child]
        assert node.text is None

    def test_invalid_tag_rejected(self) -> None:
        """Tags with whitespace or markup characters are refused."""
        for tag in ("", "a b", "a>b", "a/b"):
            with pytest.raises(ValueError):
                MarkupNode(tag)

    def test_append_to_text_node_fails(self) -> None:
        """A node holding text cannot take children."""
        node = MarkupNode("a", content="text")
        with pytest.raises(TypeError):
            node.append(MarkupNode("b"))

    def test_append_to_empty_node(self) -> None:
        """Appending to an empty node starts a child list."""
        node = MarkupNode("a")
        node.append(MarkupNode("b"))
        node.append(MarkupNode("c"))
        assert [c.tag for c in node.children] == ["b", "c"]

    def test_find(self) -> None:
        """find and find_all look at direct children by tag."""
        tree = nested_tree()
        assert tree.find("test6").text == "test7"
        assert tree.find("test9") is None
        assert len(list(tree.find_all("test5"))) == 1

    def test_has_flag(self) -> None:
        """has_flag is true only for bare attributes."""
        node = MarkupNode("a", {"x": FLAG, "y": "true"})
        assert node.has_flag("x")
        assert not node.has_flag("y")
        assert not node.has_flag("z")

    def test_equality(self) -> None:
        """Nodes compare structurally; raw does not matter."""
        assert nested_tree() == nested_tree()
        assert MarkupNode("a", content=Text("x", raw=True)) == MarkupNode("a", content="x")
        assert MarkupNode("a", content="") == MarkupNode("a")
        assert MarkupNode("a", {"k": "1"}) != MarkupNode("a", {"k": "2"})

    def test_not_hashable(self) -> None:
        """Nodes are mutable and therefore unhashable."""
        with pytest.raises(TypeError):
            hash(MarkupNode("a"))

    def test_text_payload(self) -> None:
        """text_payload prefers text, then the serialized children."""
        assert MarkupNode("a", content="body").text_payload() == "body"
        parent = MarkupNode("a", content=[MarkupNode("b", content="x"), MarkupNode("c")])
        assert parent.text_payload() == "<b>x</b>\n<c/>"
        assert MarkupNode("a", {"k": "v"}).text_payload() == '<a k="v"/>'

    def test_replace_attributes_on_plain_node(self) -> None:
        """Plain nodes swap the whole attribute map."""
        node = MarkupNode("a", {"x": "1", "y": "2"})
        node.attributes = {"z": "3"}
        assert dict(node.attributes) == {"z": "3"}


# =============================================================================
# Protected attributes
# =============================================================================


class TestProtectedAttributes:
    """Tests for TimestampedNode and RoomEventNode."""

    def make_event(self) -> RoomEventNode:
        return RoomEventNode(
            "message",
            system_id="test",
            room_id="!room",
            attributes={"sender": "@user:test"},
            content="hi",
            timestamp="2024-01-02T03:04:05+00:00",
        )

    def test_protected_attributes_come_first(self) -> None:
        """systemId, roomId and timestamp lead the attribute list."""
        assert self.make_event().serialize() == (
            '<message systemId="test" roomId="!room" timestamp="2024-01-02T03:04:05+00:00" '
            'sender="@user:test">hi</message>'
        )

    def test_changing_protected_attribute_fails(self) -> None:
        """Overwriting or deleting a protected key raises."""
        event = self.make_event()
        with pytest.raises(ProtectedAttributeError):
            event.attributes["roomId"] = "!other"
        with pytest.raises(ProtectedAttributeError):
            del event.attributes["systemId"]
        with pytest.raises(ProtectedAttributeError):
            event.attributes.pop("timestamp")
        with pytest.raises(ProtectedAttributeError):
            event.attributes = {"roomId": "!other"}
        assert event.room_id == "!room"

    def test_same_value_and_other_keys_allowed(self) -> None:
        """Rewriting the same value and editing other keys is fine."""
        event = self.make_event()
        event.attributes["roomId"] = "!room"
        event.attributes["sent"] = FLAG
        event.attributes = {"sender": "@other:test"}
        assert event.get("sender") == "@other:test"
        assert event.system_id == "test"
        assert event.has_flag("sent")

    def test_clear_keeps_protected_keys(self) -> None:
        """clear() drops only unprotected keys."""
        event = self.make_event()
        event.attributes.clear()
        assert list(event.attributes) == ["systemId", "roomId", "timestamp"]

    def test_timestamped_node_defaults_to_now(self) -> None:
        """Without a timestamp the current local time is used."""
        before = datetime.now().astimezone().replace(microsecond=0)
        node = TimestampedNode("thought", content="hmm")
        assert node.timestamp >= before
        assert node.timestamp.tzinfo is not None
        with pytest.raises(ProtectedAttributeError):
            node.attributes["timestamp"] = "2000-01-01T00:00:00+00:00"


class TestTimeFormatting:
    """Tests for timestamp helpers."""

    def test_format_timestamp(self) -> None:
        """ISO-8601 with offset, seconds precision."""
        moment = datetime(2024, 1, 2, 3, 4, 5, 678, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(moment) == "2024-01-02T03:04:05+02:00"

    def test_format_display_time(self) -> None:
        """Display time separates date, time and offset with spaces."""
        moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=-5)))
        assert format_display_time(moment) == "2024-01-02 03:04:05 -05:00"


# =============================================================================
# Parsing
# =============================================================================


class TestParse:
    """Tests for parse and parse_fragment."""

    def test_parse_nested_tree(self) -> None:
        """Parsing the serialized tree gives the tree back."""
        assert parse(NESTED) == nested_tree()

    def test_bare_attribute(self) -> None:
        """A bare attribute parses as FLAG."""
        node = parse('<a x="1" y/>')
        assert node.get("x") == "1"
        assert node.get("y") is FLAG
        assert node.content is None

    def test_entities_are_unescaped(self) -> None:
        """Entities in text and attributes are decoded."""
        node = parse('<m q="&quot;x&quot; &lt;y&gt;">a &lt; b &amp; c</m>')
        assert node.get("q") == '"x" <y>'
        assert node.text == "a < b & c"

    def test_text_is_kept_verbatim(self) -> None:
        """Text content keeps its surrounding whitespace."""
        assert parse("<a> hi there </a>").text == " hi there "

    def test_same_tag_nesting(self) -> None:
        """A child sharing its parent's tag closes at the right place."""
        node = parse("<a><a>x</a><a/><b><a>y</a></b></a>")
        assert [c.tag for c in node.children] == ["a", "a", "b"]
        assert node.children[0].text == "x"
        assert node.children[1].content is None
        assert node.children[2].find("a").text == "y"

    def test_sibling_subtrees_with_same_tag(self) -> None:
        """Several same-named subtrees under one parent each get their own close tag."""
        node = parse("<list>\n <item><item>1</item></item>\n <item>2</item>\n</list>")
        assert len(node.children) == 2
        assert node.children[0].children[0].text == "1"
        assert node.children[1].text == "2"

    def test_quoted_angle_bracket_in_attribute(self) -> None:
        """A '>' inside an attribute value does not end the tag."""
        node = parse('<a><a t="x>y"/></a>')
        assert node.children[0].get("t") == "x>y"

    def test_parse_fragment(self) -> None:
        """parse_fragment returns sibling elements in order."""
        nodes = parse_fragment(' <a/>\n<b k="v">x</b> ')
        assert [n.tag for n in nodes] == ["a", "b"]
        assert nodes[1].get("k") == "v"

    def test_parse_fragment_empty(self) -> None:
        """Whitespace only parses to no elements."""
        assert parse_fragment("  \n ") == []

    @pytest.mark.parametrize(
        "text",
        [
            "hello",
            "<a>",
            "<a></b>",
            "<a><b></c></a>",
            '<a x=1/>',
            '<a x="1/>',
            "<a/><b/>",
            "<>x</>",
        ],
    )
    def test_malformed_input(self, text: str) -> None:
        """Malformed markup raises ParseError."""
        with pytest.raises(ParseError):
            parse(text)

    def test_parse_error_carries_position(self) -> None:
        """ParseError reports the offset where parsing failed."""
        with pytest.raises(ParseError) as info:
            parse("<a/> trailing")
        assert info.value.position == 4

    def test_event_round_trip(self) -> None:
        """A serialized room event parses back to an equal plain node."""
        event = RoomEventNode(
            "message",
            system_id="test",
            room_id="!r",
            attributes={"sender": "@u:test", "sent": FLAG},
            content="multi\nline & <text>",
        )
        assert parse(event.serialize(4)) == event


# =============================================================================
# Round trip
# =============================================================================

TEXT_PIECES = ["hello", "a & b", "<tag>", '"quoted"', "x > y", "&amp;", "line\nbreak", " ", ""]


def random_node(rng: random.Random, depth: int) -> MarkupNode:
    """Random tree over two tag names so same-tag nesting and siblings are common."""
    attributes: dict[str, str | bool] = {}
    for name in rng.sample(["k", "flag", "v"], rng.randint(0, 3)):
        attributes[name] = FLAG if rng.random() < 0.3 else rng.choice(TEXT_PIECES)
    kind = rng.choice(["empty", "text", "children"] if depth > 0 else ["empty", "text"])
    if kind == "text":
        content = "".join(rng.choice(TEXT_PIECES) for _ in range(rng.randint(1, 3)))
    elif kind == "children":
        content = [random_node(rng, depth - 1) for _ in range(rng.randint(1, 3))]
    else:
        content = None
    return MarkupNode(rng.choice(["a", "b"]), attributes, content)


class TestRoundTrip:
    """parse(serialize(node)) gives back an equal node."""

    @pytest.mark.parametrize("seed", range(25))
    def test_generated_trees(self, seed: int) -> None:
        node = random_node(random.Random(seed), depth=4)
        assert parse(node.serialize()) == node

    @pytest.mark.parametrize("nesting_level", [0, 3])
    def test_nested_same_tag_siblings(self, nesting_level: int) -> None:
        node = MarkupNode(
            "a",
            content=[
                MarkupNode("a", content=[MarkupNode("a", {"flag": FLAG}), MarkupNode("a", content="x")]),
                MarkupNode("a", {"k": "&lt;"}, ""),
                MarkupNode("a", content=[MarkupNode("b", content="<a>")]),
            ],
        )
        assert parse(node.serialize(nesting_level)) == node
