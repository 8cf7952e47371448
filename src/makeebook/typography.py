"""Typography normalization for chapter HTML fragments.

Only visible text is rewritten. The fragment is split into tag segments
(``<...>``) and text segments; the text transforms run on text segments,
then the excessive ``<br>`` cleanup runs on the reassembled fragment.
Each text segment is transformed until it stops changing, so running
:func:`fix_typography` on its own output is a no-op.
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from typing import Callable, Iterator, Mapping, Sequence

LEFT_DOUBLE_QUOTE = "\u201c"
RIGHT_DOUBLE_QUOTE = "\u201d"
LEFT_SINGLE_QUOTE = "\u2018"
RIGHT_SINGLE_QUOTE = "\u2019"
EM_DASH = "\u2014"
ELLIPSIS = "\u2026"

_QUOTES = "\"'" + LEFT_DOUBLE_QUOTE + RIGHT_DOUBLE_QUOTE + LEFT_SINGLE_QUOTE + RIGHT_SINGLE_QUOTE
_PLACEHOLDERS = r"\ue000-\uf8ff"

# Characters after which a straight quote opens, and before which it closes.
_OPEN_CONTEXT = r"\s>(\[{" + EM_DASH + LEFT_DOUBLE_QUOTE + LEFT_SINGLE_QUOTE
_CLOSE_CONTEXT = r"\s,.<!?;:)\]}" + EM_DASH + ELLIPSIS + _QUOTES


def _quote_patterns(quote: str) -> tuple[re.Pattern[str], ...]:
    # A quote that sits between an opening context and a word opens; one
    # followed by a closing context closes; whatever is left after an
    # opening context opens.
    return (
        re.compile(rf"(?<![^{_OPEN_CONTEXT}]){quote}(?=[^{_CLOSE_CONTEXT}])"),
        re.compile(rf"{quote}(?![^{_CLOSE_CONTEXT}])"),
        re.compile(rf"(?<![^{_OPEN_CONTEXT}]){quote}"),
    )


_DOUBLE_QUOTE_RES = _quote_patterns('"')
_SINGLE_QUOTE_RES = _quote_patterns("'")
_APOSTROPHE_RE = re.compile(r"(?<=\w)'(?=\w)")

# Runs of four or more hyphens are rules (scene breaks) and stay as typed.
_HYPHEN_RUN_RE = re.compile(r"(?<!-)-{2,3}(?!-)")
_SPACED_HYPHEN_RE = re.compile(r"(?<= )-(?= )")
_THREE_DOTS_RE = re.compile(r"\.{3}")
_EXTRA_SPACES_RE = re.compile(r" {2,}")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+(?=[,.?!;:])")
_MISSING_SPACE_AFTER_PUNCT_RE = re.compile(
    r"([,.?!;:])(?=[^\s"
    + _QUOTES
    + r"0-9,.?!;:)\]}/"
    + _PLACEHOLDERS
    + ELLIPSIS
    + r"-])"
)
_EXCESSIVE_BREAKS_RE = re.compile(r"(?:<br\s*/?>\s*){3,}", re.IGNORECASE)

_TAG_RE = re.compile(r"<[^<>]*>")
_TAG_NAME_RE = re.compile(r"<\s*(/?)\s*([A-Za-z][A-Za-z0-9-]*)")
_ENTITY_RE = re.compile(r"&(?:#[0-9]+|#[xX][0-9A-Fa-f]+|[A-Za-z][A-Za-z0-9]*);")
_PRIVATE_USE_RE = re.compile(f"[{_PLACEHOLDERS}]")
_PLACEHOLDER_BASE = 0xE000
_PLACEHOLDER_LIMIT = 0xF8FF - _PLACEHOLDER_BASE
_RAW_TEXT_TAGS = frozenset({"code", "pre", "script", "style"})
_MAX_PASSES = 6


def smart_quotes(text: str) -> str:
    opening, closing, loose_opening = _DOUBLE_QUOTE_RES
    result = opening.sub(LEFT_DOUBLE_QUOTE, text)
    result = closing.sub(RIGHT_DOUBLE_QUOTE, result)
    result = loose_opening.sub(LEFT_DOUBLE_QUOTE, result)
    result = _APOSTROPHE_RE.sub(RIGHT_SINGLE_QUOTE, result)
    opening, closing, loose_opening = _SINGLE_QUOTE_RES
    result = opening.sub(LEFT_SINGLE_QUOTE, result)
    result = closing.sub(RIGHT_SINGLE_QUOTE, result)
    return loose_opening.sub(LEFT_SINGLE_QUOTE, result)


def fix_dashes(text: str) -> str:
    result = _HYPHEN_RUN_RE.sub(EM_DASH, text)
    return _SPACED_HYPHEN_RE.sub(EM_DASH, result)


def fix_ellipsis(text: str) -> str:
    return _THREE_DOTS_RE.sub(ELLIPSIS, text)


def remove_extra_spaces(text: str) -> str:
    return _EXTRA_SPACES_RE.sub(" ", text)


def fix_punctuation_spacing(text: str) -> str:
    result = _SPACE_BEFORE_PUNCT_RE.sub("", text)
    return _MISSING_SPACE_AFTER_PUNCT_RE.sub(r"\1 ", result)


def fix_excessive_breaks(html: str) -> str:
    """Collapse three or more consecutive ``<br>`` elements into two."""
    return _EXCESSIVE_BREAKS_RE.sub("<br /><br />", html)


_TEXT_TRANSFORMS: tuple[tuple[str, Callable[[str], str]], ...] = (
    ("Converted straight quotes to curly quotes", smart_quotes),
    ("Converted double hyphens to em-dashes", fix_dashes),
    ("Converted three dots to ellipsis character", fix_ellipsis),
    ("Removed extra spaces", remove_extra_spaces),
    ("Fixed spacing around punctuation", fix_punctuation_spacing),
)
_BREAKS_CHANGE = "Fixed excessive line breaks"


def _apply_text_transforms(text: str) -> str:
    for _, transform in _TEXT_TRANSFORMS:
        text = transform(text)
    return text


def _iter_segments(html: str) -> Iterator[tuple[bool, str]]:
    """Yield ``(editable, segment)`` pairs covering ``html`` in order.

    Tags are never editable. Text is editable unless it sits inside a
    raw-text element (``code``, ``pre``, ``script``, ``style``).
    """
    open_raw: dict[str, int] = {}
    position = 0
    for match in _TAG_RE.finditer(html):
        if match.start() > position:
            yield not any(open_raw.values()), html[position : match.start()]
        tag = match.group(0)
        yield False, tag
        position = match.end()
        name_match = _TAG_NAME_RE.match(tag)
        if not name_match:
            continue
        closing, name = name_match.group(1), name_match.group(2).lower()
        if name not in _RAW_TEXT_TAGS:
            continue
        if closing:
            if open_raw.get(name):
                open_raw[name] -= 1
        elif not tag.rstrip(">").rstrip().endswith("/"):
            open_raw[name] = open_raw.get(name, 0) + 1
    if position < len(html):
        yield not any(open_raw.values()), html[position:]


def _mask_entities(text: str) -> tuple[str, list[str]] | None:
    if _PRIVATE_USE_RE.search(text):
        return None
    entities: list[str] = []

    def _swap(match: re.Match[str]) -> str:
        entities.append(match.group(0))
        return chr(_PLACEHOLDER_BASE + len(entities) - 1)

    masked = _ENTITY_RE.sub(_swap, text)
    if len(entities) > _PLACEHOLDER_LIMIT:
        return None
    return masked, entities


def _unmask_entities(text: str, entities: list[str]) -> str:
    if not entities:
        return text
    return _PRIVATE_USE_RE.sub(lambda m: entities[ord(m.group(0)) - _PLACEHOLDER_BASE], text)


def _fix_text_segment(text: str) -> str:
    masked = _mask_entities(text)
    if masked is None:
        return text
    current, entities = masked
    for _ in range(_MAX_PASSES):
        updated = _apply_text_transforms(current)
        if updated == current:
            break
        current = updated
    return _unmask_entities(current, entities)


def fix_typography(html: str) -> str:
    """Apply every typography fix to the visible text of ``html``."""
    if not html:
        return html
    parts = [
        _fix_text_segment(segment) if editable else segment
        for editable, segment in _iter_segments(html)
    ]
    return fix_excessive_breaks("".join(parts))


def check_typography(content: str) -> list[str]:
    """Return the categories of fixes :func:`fix_typography` would apply."""
    if not content:
        return []
    texts: list[str] = []
    for editable, segment in _iter_segments(content):
        if not editable:
            continue
        masked = _mask_entities(segment)
        if masked is not None:
            texts.append(masked[0])
    changes = [
        label
        for label, transform in _TEXT_TRANSFORMS
        if any(transform(text) != text for text in texts)
    ]
    if _EXCESSIVE_BREAKS_RE.search(content):
        changes.append(_BREAKS_CHANGE)
    return changes


@dataclass
class ChapterFix:
    fixed: str
    changes: list[str] = field(default_factory=list)


@dataclass
class ChapterFixSummary:
    chapter_index: int
    changes: list[str]


@dataclass
class BatchFix:
    chapters: list
    total_changes: int = 0
    summary: list[ChapterFixSummary] = field(default_factory=list)


def auto_fix_chapter(content: str) -> ChapterFix:
    changes = check_typography(content)
    return ChapterFix(fixed=fix_typography(content), changes=changes)


def _chapter_content(chapter: object) -> str:
    if isinstance(chapter, Mapping):
        value = chapter.get("content")
    else:
        value = getattr(chapter, "content", None)
    return value if isinstance(value, str) else ""


def _with_content(chapter: object, content: str) -> object:
    if isinstance(chapter, Mapping):
        updated = dict(chapter)
        updated["content"] = content
        return updated
    if dataclasses.is_dataclass(chapter) and not isinstance(chapter, type):
        return dataclasses.replace(chapter, content=content)
    raise TypeError(f"Unsupported chapter type: {type(chapter).__name__}")


def auto_fix_chapters(chapters: Sequence[object]) -> BatchFix:
    """Fix every chapter in reading order and summarize what changed."""
    result = BatchFix(chapters=[])
    for index, chapter in enumerate(chapters):
        fix = auto_fix_chapter(_chapter_content(chapter))
        if fix.changes:
            result.summary.append(ChapterFixSummary(chapter_index=index, changes=fix.changes))
            result.total_changes += len(fix.changes)
        result.chapters.append(_with_content(chapter, fix.fixed))
    return result


__all__ = [
    "EM_DASH",
    "ELLIPSIS",
    "LEFT_DOUBLE_QUOTE",
    "RIGHT_DOUBLE_QUOTE",
    "LEFT_SINGLE_QUOTE",
    "RIGHT_SINGLE_QUOTE",
    "BatchFix",
    "ChapterFix",
    "ChapterFixSummary",
    "auto_fix_chapter",
    "auto_fix_chapters",
    "check_typography",
    "fix_dashes",
    "fix_ellipsis",
    "fix_excessive_breaks",
    "fix_punctuation_spacing",
    "fix_typography",
    "remove_extra_spaces",
    "smart_quotes",
]
