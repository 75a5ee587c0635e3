"""Tests for the text transform pipeline."""

import pytest

from livechat.services.chat_adapters.text_pipeline import (
    EmoteSpan,
    TextPipeline,
    TokenEmotes,
    escape_html,
    linkify,
    parse_emote_ranges,
    rewrite_emote_spans,
)


def twitch_markup(span: EmoteSpan) -> str:
    return f'<img class="emoticon" src="https://static-cdn.jtvnw.net/emoticons/v1/{span.id}/3.0" />'


class TestEscapeAndLinkify:
    """Test cases for the escape and linkify passes."""

    def test_escape_html(self):
        assert escape_html("<script>\"x\" & 'y'</script>") == (
            "&lt;script&gt;&quot;x&quot; &amp; &#x27;y&#x27;&lt;/script&gt;"
        )

    def test_linkify_schemes(self):
        text = "a http://a.io b https://b.io c ftp://c.io d www.d.io"

        result = linkify(text)

        for url in ("http://a.io", "https://b.io", "ftp://c.io", "www.d.io"):
            assert f"<a href='{url}' class='link'>{url}</a>" in result

    def test_linkify_leaves_plain_text(self):
        assert linkify("nothing to see") == "nothing to see"

    def test_pipeline_escapes_before_linkify(self):
        pipeline = TextPipeline()

        result = pipeline.render("<b> www.example.com")

        assert result == "&lt;b&gt; <a href='www.example.com' class='link'>www.example.com</a>"

    def test_pipeline_without_linkify(self):
        pipeline = TextPipeline(linkify=False)

        assert pipeline.render("www.example.com") == "www.example.com"

    def test_render_none(self):
        assert TextPipeline().render(None) == ""


class TestEmoteSpans:
    """Test cases for positional emote substitution."""

    def test_parse_emote_ranges_sorted_by_start(self):
        spans = parse_emote_ranges({"25": ["0-4", "12-16"], "1902": ["6-10"]})

        assert [(s.start, s.end, s.id) for s in spans] == [
            (0, 4, "25"),
            (6, 10, "1902"),
            (12, 16, "25"),
        ]

    def test_parse_emote_ranges_empty(self):
        assert parse_emote_ranges(None) == []
        assert parse_emote_ranges({}) == []

    def test_parse_emote_ranges_keeps_spans_with_same_start(self):
        spans = parse_emote_ranges({"25": ["0-4"], "1902": ["0-2"]})

        assert sorted((s.start, s.end, s.id) for s in spans) == [(0, 2, "1902"), (0, 4, "25")]

    def test_parse_emote_ranges_rejects_malformed_range(self):
        with pytest.raises(ValueError):
            parse_emote_ranges({"25": ["3"]})

    def test_single_emote_at_end(self):
        raw = "hi Kappa"
        spans = parse_emote_ranges({"25": ["3-7"]})

        result = TextPipeline().render(raw, spans, twitch_markup)

        assert result == "hi " + twitch_markup(EmoteSpan(3, 7, "25"))
        assert "Kappa" not in result

    def test_offsets_track_previous_replacements(self):
        raw = "Kappa hello Kappa Keepo"
        spans = parse_emote_ranges({"25": ["0-4", "12-16"], "1902": ["18-22"]})

        result = rewrite_emote_spans(raw, spans, lambda s: f"[{s.id}]")

        assert result == "[25] hello [25] [1902]"

    def test_replacing_fragments_back_restores_raw(self):
        raw = "Kappa hello Kappa PogChamp!"
        spans = parse_emote_ranges({"25": ["0-4", "12-16"], "88": ["18-25"]})

        result = rewrite_emote_spans(raw, spans, twitch_markup)

        restored = result
        for span in spans:
            restored = restored.replace(twitch_markup(span), raw[span.start:span.end + 1], 1)
        assert restored == raw

    def test_escape_only_touches_text_outside_spans(self):
        raw = "<b>Kappa</b>"
        spans = parse_emote_ranges({"25": ["3-7"]})

        result = TextPipeline().render(raw, spans, twitch_markup)

        assert result == "&lt;b&gt;" + twitch_markup(spans[0]) + "&lt;/b&gt;"

    def test_linkify_around_emote(self):
        raw = "Kappa http://x.io"
        spans = parse_emote_ranges({"25": ["0-4"]})

        result = TextPipeline().render(raw, spans, twitch_markup)

        assert result == twitch_markup(spans[0]) + " <a href='http://x.io' class='link'>http://x.io</a>"


class TestTokenEmotes:
    """Test cases for dictionary emote substitution."""

    def test_whole_tokens_replaced(self):
        emotes = TokenEmotes({":)": "https://cdn.example.com/smile.png"})

        result = emotes.substitute("hi :) there a:)")

        assert result == (
            'hi <img class="emoticon" src="https://cdn.example.com/smile.png" alt=":)" /> there a:)'
        )

    def test_keys_matched_after_escaping(self):
        pipeline = TextPipeline(emotes=TokenEmotes({"<3": "https://cdn.example.com/heart.png"}))

        result = pipeline.render("love <3")

        assert 'src="https://cdn.example.com/heart.png"' in result
        assert 'alt="&lt;3"' in result

    def test_links_are_not_rewritten(self):
        pipeline = TextPipeline(emotes=TokenEmotes({"www.example.com": "https://cdn.example.com/x.png"}))

        result = pipeline.render("www.example.com")

        assert result == "<a href='www.example.com' class='link'>www.example.com</a>"

    def test_empty_dictionary_is_falsy(self):
        assert not TokenEmotes({})
