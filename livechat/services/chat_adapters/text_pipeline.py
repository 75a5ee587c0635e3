"""Text transforms applied to raw chat bodies before they are emitted.

Passes run in a fixed order: HTML escape, URL linkification, emote
substitution. A later pass only touches text outside the markup inserted by
an earlier one, so inserted tags are never escaped or rewritten twice.
"""

import html
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Optional, Tuple


URL_PATTERN = re.compile(r"(?:(?:https?|ftp)://|www\.)\S+", re.IGNORECASE)


def escape_html(text: str) -> str:
    return html.escape(text, quote=True)


def split_links(text: str) -> Iterator[Tuple[bool, str]]:
    """Yield ``(is_link, piece)`` pairs covering ``text`` in order."""
    cursor = 0
    for match in URL_PATTERN.finditer(text):
        if match.start() > cursor:
            yield False, text[cursor:match.start()]
        yield True, match.group()
        cursor = match.end()
    if cursor < len(text):
        yield False, text[cursor:]


def link_markup(url: str, text: Optional[str] = None, css_class: str = "link") -> str:
    return f"<a href='{url}' class='{css_class}'>{text if text is not None else url}</a>"


def linkify(text: str, css_class: str = "link") -> str:
    """Wrap every ``http(s)://``, ``ftp://`` or ``www.`` token in an anchor."""
    return "".join(
        link_markup(piece, css_class=css_class) if is_link else piece
        for is_link, piece in split_links(text)
    )


@dataclass(frozen=True)
class EmoteSpan:
    """Inclusive character range ``[start, end]`` of the raw body naming an emote."""

    start: int
    end: int
    id: Any


def parse_emote_ranges(emotes: Optional[Mapping[Any, Iterable[str]]]) -> List[EmoteSpan]:
    """Flatten ``{emote_id: ["start-end", ...]}`` into spans sorted by start.

    Every range is kept; overlapping ranges are passed through unchanged.
    Raises ``ValueError`` for a range that is not ``start-end``.
    """
    if not emotes:
        return []

    spans = []
    for emote_id, ranges in emotes.items():
        for position in ranges or ():
            start, _, end = str(position).partition("-")
            spans.append(EmoteSpan(start=int(start), end=int(end), id=emote_id))

    return sorted(spans, key=lambda s: s.start)


def rewrite_emote_spans(
    raw: str,
    spans: Iterable[EmoteSpan],
    render: Callable[[EmoteSpan], str],
    transform: Optional[Callable[[str], str]] = None,
) -> str:
    """Replace each span of ``raw`` with ``render(span)``.

    Span offsets refer to ``raw``. A running offset tracks how much the
    output has grown or shrunk from the replacements already made. The
    optional ``transform`` (escape, linkify) is applied only to the text
    between replaced spans. Behaviour for overlapping spans is undefined.
    """
    output = raw
    offset = 0
    inserted: List[Tuple[int, int]] = []

    for span in sorted(spans, key=lambda s: s.start):
        fragment = render(span)
        left = output[: span.start + offset]
        right = output[span.end + 1 + offset:]
        output = f"{left}{fragment}{right}"
        inserted.append((len(left), len(left) + len(fragment)))
        offset += len(fragment) - (span.end - span.start + 1)

    if transform is None:
        return output

    pieces = []
    cursor = 0
    for start, end in inserted:
        pieces.append(transform(output[cursor:start]))
        pieces.append(output[start:end])
        cursor = end
    pieces.append(transform(output[cursor:]))
    return "".join(pieces)


class TokenEmotes:
    """Dictionary-based emote substitution for platforms without positions.

    Whole whitespace-delimited tokens equal to a dictionary key are replaced
    by an image tag. Matching runs on escaped text, so keys are escaped too.
    """

    def __init__(self, emotes: Mapping[str, str], css_class: str = "emoticon"):
        self.css_class = css_class
        self._urls = {escape_html(code): url for code, url in emotes.items() if code}
        self._codes = {escape_html(code): code for code in emotes if code}
        if self._urls:
            alternatives = "|".join(
                re.escape(code) for code in sorted(self._urls, key=len, reverse=True)
            )
            self._pattern = re.compile(rf"(?<!\S)(?:{alternatives})(?!\S)")
        else:
            self._pattern = None

    def __bool__(self) -> bool:
        return self._pattern is not None

    def markup(self, code: str) -> str:
        return (
            f'<img class="{self.css_class}" src="{self._urls[code]}" '
            f'alt="{code}" />'
        )

    def substitute(self, text: str) -> str:
        if self._pattern is None:
            return text
        return self._pattern.sub(lambda m: self.markup(m.group()), text)


class TextPipeline:
    """Ordered escape → linkify → emote passes, each one optional."""

    def __init__(
        self,
        escape: bool = True,
        linkify: bool = True,
        emotes: Optional[TokenEmotes] = None,
        link_class: str = "link",
    ):
        self.escape = escape
        self.linkify = linkify
        self.emotes = emotes if emotes else None
        self.link_class = link_class

    def transform_segment(self, text: str) -> str:
        """Run every enabled pass over a piece of plain text."""
        if not text:
            return text
        if self.escape:
            text = escape_html(text)

        if not self.linkify:
            return self._emotes(text)

        return "".join(
            link_markup(piece, css_class=self.link_class) if is_link else self._emotes(piece)
            for is_link, piece in split_links(text)
        )

    def _emotes(self, text: str) -> str:
        return self.emotes.substitute(text) if self.emotes else text

    def render(
        self,
        raw: Optional[str],
        spans: Optional[Iterable[EmoteSpan]] = None,
        render_span: Optional[Callable[[EmoteSpan], str]] = None,
    ) -> str:
        """Transform ``raw``; positional ``spans`` are replaced via ``render_span``."""
        raw = raw or ""
        spans = list(spans or ())
        if spans and render_span is not None:
            return rewrite_emote_spans(raw, spans, render_span, self.transform_segment)
        return self.transform_segment(raw)
