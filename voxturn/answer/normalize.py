from __future__ import annotations

import regex as re

MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\((?:[^)\s]+)\)")
URL = re.compile(r"(?:https?://|www\.)\S+", re.IGNORECASE)
CITATION = re.compile(r"【[^】]*】|\[\^?\d+(?:\s*[,-]\s*\d+)*\]|\(\s*source\s*:[^)]*\)", re.IGNORECASE)
EMPHASIS = re.compile(r"\*{1,3}|~~|`{1,3}|(?<![\p{L}\p{N}])_{1,2}|_{1,2}(?![\p{L}\p{N}])")
HEADING = re.compile(r"^\s{0,3}#{1,6}\s*", re.MULTILINE)
BULLET = re.compile(r"^\s*(?:[-+]|\d+\.)\s+", re.MULTILINE)
EMOJI = re.compile(r"[\p{Extended_Pictographic}\p{Emoji_Modifier}\uFE0F\u200D]+")
SPACE_BEFORE_PUNCT = re.compile(r"\s+([,.;:!?])")
WHITESPACE = re.compile(r"\s+")


def normalize_reply(text: str | None) -> str:
    """Strip what a speech synthesizer should never read aloud.

    Markdown links keep their label; bare URLs, emphasis markers, headings,
    list bullets, citation annotations and emoji are removed, then whitespace
    is collapsed.
    """
    if not text:
        return ""
    cleaned = MARKDOWN_LINK.sub(r"\1", text)
    cleaned = URL.sub(" ", cleaned)
    cleaned = CITATION.sub(" ", cleaned)
    cleaned = HEADING.sub("", cleaned)
    cleaned = BULLET.sub("", cleaned)
    cleaned = EMPHASIS.sub("", cleaned)
    cleaned = EMOJI.sub(" ", cleaned)
    cleaned = WHITESPACE.sub(" ", cleaned)
    cleaned = SPACE_BEFORE_PUNCT.sub(r"\1", cleaned)
    return cleaned.strip()


__all__ = ["normalize_reply"]
