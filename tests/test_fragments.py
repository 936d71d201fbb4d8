from __future__ import annotations

import html

import pytest

from chat.errors import FragmentEncodingError
from chat.fragments import check_fragment
from chat.models import Fragment, FragmentSet, Turn


def reply(text: str) -> Fragment:
    return Fragment(name="response", template="fragments/response.html", context={"response": text})


def transcript(turns, transaction_id=None) -> Fragment:
    return Fragment(
        name="recent-message-list",
        template="fragments/transcript.html",
        context={"turns": turns, "transaction_id": transaction_id},
        oob=True,
    )


TURNS = [
    Turn(role="user", text="hi", sequence_no=1),
    Turn(role="assistant", text="hello", sequence_no=2),
]


class TestEncode:
    def test_reply_bytes_precede_auxiliary_bytes(self, encoder) -> None:
        body = encoder.encode(FragmentSet(fragments=[reply("REPLY-MARK"), transcript(TURNS)]))
        assert body.index("REPLY-MARK") < body.index('id="recent-message-list"')

    def test_order_follows_the_set(self, encoder) -> None:
        body = encoder.encode(FragmentSet(fragments=[transcript(TURNS), reply("REPLY-MARK")]))
        assert body.index('id="recent-message-list"') < body.index("REPLY-MARK")

    def test_reply_is_a_bare_paragraph(self, encoder) -> None:
        body = encoder.encode(FragmentSet(fragments=[reply("Mock AI response")]))
        assert body.startswith("<p")
        assert body.endswith("</p>")
        assert 'class="mt-4 h-full overflow-auto"' in body
        assert "<html" not in body

    def test_reply_text_is_escaped_not_altered(self, encoder) -> None:
        text = "Test response with special chars: <>&\"'"
        body = encoder.encode(FragmentSet(fragments=[reply(text)]))
        inner = body[body.index(">") + 1 : body.rindex("</p>")]
        assert "<>" not in inner
        assert html.unescape(inner) == text

    def test_auxiliary_is_out_of_band(self, encoder) -> None:
        body = encoder.encode(FragmentSet(fragments=[reply("x"), transcript(TURNS)]))
        assert 'hx-swap-oob="true"' in body
        assert body.count("hx-swap-oob") == 1

    def test_transaction_id_is_carried_verbatim(self, encoder) -> None:
        body = encoder.encode(FragmentSet(fragments=[reply("x"), transcript(TURNS, "thinking-123")]))
        assert 'data-transaction-id="thinking-123"' in body

    def test_transaction_id_is_attribute_safe(self, encoder) -> None:
        body = encoder.encode(FragmentSet(fragments=[transcript(TURNS, 'x" onclick="alert(1)')]))
        assert 'onclick="alert(1)"' not in body
        check_fragment("recent-message-list", body, oob=True)

    def test_transcript_escapes_turn_text(self, encoder) -> None:
        turns = [Turn(role="user", text="<script>alert(1)</script>", sequence_no=1)]
        body = encoder.encode(FragmentSet(fragments=[transcript(turns)]))
        assert "<script>" not in body
        assert "&lt;script&gt;" in body

    def test_each_fragment_stands_alone(self, encoder) -> None:
        fragments = [reply("x"), transcript(TURNS, "thinking-1")]
        for fragment in fragments:
            markup = encoder.render_fragment(fragment)
            check_fragment(fragment.name, markup, oob=fragment.oob)

    def test_error_fragment_renders(self, encoder) -> None:
        fragment = Fragment(
            name="error",
            template="fragments/error.html",
            context={"error": "Please type a message.", "kind": "invalid", "transaction_id": "thinking-4"},
        )
        body = encoder.encode(FragmentSet(fragments=[fragment]))
        assert "Please type a message." in body
        assert 'data-transaction-id="thinking-4"' in body
        assert 'role="alert"' in body

    def test_empty_set_encodes_to_empty_body(self, encoder) -> None:
        assert encoder.encode(FragmentSet()) == ""


class TestCheckFragment:
    def test_accepts_single_root_with_void_children(self) -> None:
        check_fragment("ok", '<div id="a"><img src="x.png"><br/><span>t</span></div>')

    @pytest.mark.parametrize(
        "markup",
        [
            "<p>one</p><p>two</p>",
            "<div><span></div>",
            "<div>open",
            "loose text <p>x</p>",
            "",
        ],
    )
    def test_rejects_malformed(self, markup: str) -> None:
        with pytest.raises(FragmentEncodingError) as excinfo:
            check_fragment("bad", markup)
        assert excinfo.value.fragment == "bad"

    def test_out_of_band_root_needs_id_and_flag(self) -> None:
        with pytest.raises(FragmentEncodingError):
            check_fragment("aux", '<ul hx-swap-oob="true"></ul>', oob=True)
        with pytest.raises(FragmentEncodingError):
            check_fragment("aux", '<ul id="list"></ul>', oob=True)
        check_fragment("aux", '<ul id="list" hx-swap-oob="true"></ul>', oob=True)

    def test_encoder_rejects_broken_template(self, encoder, monkeypatch) -> None:
        monkeypatch.setattr(encoder.renderer, "render", lambda template, context: "<p>unclosed")
        with pytest.raises(FragmentEncodingError):
            encoder.encode(FragmentSet(fragments=[reply("x")]))
