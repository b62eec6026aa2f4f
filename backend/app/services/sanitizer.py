from __future__ import annotations

import re

REMOVED_PLACEHOLDER = "[removed]"

_CONTROL_CHARACTERS_PATTERN = re.compile(
    r"[\x00-\x08\x0b-\x1f\x7f\u200b-\u200f\u202a-\u202e\u2060\ufeff]"
)
_SCRIPT_BLOCK_PATTERN = re.compile(
    r"<(script|style)\b[^>]*>.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
_MARKUP_TAG_PATTERN = re.compile(r"</?[A-Za-z][^<>]*>")
_CODE_FENCE_PATTERN = re.compile(r"`{3,}")
_ROLE_PREFIX_PATTERN = re.compile(
    r"^[ \t]*(?:system|assistant|developer|user)[ \t]*:",
    re.IGNORECASE | re.MULTILINE,
)
_INSTRUCTION_OVERRIDE_PATTERN = re.compile(
    r"(?:ignore|disregard|forget|override)[ \t]+(?:all[ \t]+)?(?:the[ \t]+)?"
    r"(?:previous|prior|above|earlier|preceding)[ \t]+"
    r"(?:instructions|rules|prompts|messages)",
    re.IGNORECASE,
)
_INLINE_WHITESPACE_PATTERN = re.compile(r"[ \t]+")
_EXCESS_NEWLINES_PATTERN = re.compile(r"\n{3,}")
_LINE_PADDING_PATTERN = re.compile(r"[ \t]*\n[ \t]*")


def sanitize(text: str, max_length: int) -> str:
    """Prepare untrusted text for the analysis model.

    Strips markup, control characters, code fences and prompt-steering phrases,
    then truncates. The cleanup runs to a fixed point before truncation, so
    ``sanitize(sanitize(x, n), n) == sanitize(x, n)`` and the result never
    exceeds ``max_length``.
    """
    if max_length <= 0:
        return ""
    return clean(text)[:max_length].strip()


def clean(text: str) -> str:
    """Run the sanitizer cleanup to a fixed point without truncating."""
    current = text.replace("\r\n", "\n").replace("\r", "\n")
    while True:
        cleaned = _clean_once(current)
        if cleaned == current:
            return current
        current = cleaned


def _clean_once(text: str) -> str:
    cleaned = _CONTROL_CHARACTERS_PATTERN.sub("", text)
    cleaned = _SCRIPT_BLOCK_PATTERN.sub(" ", cleaned)
    cleaned = _MARKUP_TAG_PATTERN.sub(" ", cleaned)
    cleaned = _CODE_FENCE_PATTERN.sub("", cleaned)
    cleaned = _ROLE_PREFIX_PATTERN.sub("", cleaned)
    cleaned = _INSTRUCTION_OVERRIDE_PATTERN.sub(REMOVED_PLACEHOLDER, cleaned)
    cleaned = cleaned.replace("\t", " ")
    cleaned = _INLINE_WHITESPACE_PATTERN.sub(" ", cleaned)
    cleaned = _LINE_PADDING_PATTERN.sub("\n", cleaned)
    cleaned = _EXCESS_NEWLINES_PATTERN.sub("\n\n", cleaned)
    return cleaned.strip()
