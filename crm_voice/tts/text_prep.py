"""Text shaping applied before a response reaches the synthesis engine.

The order is fixed: :func:`summarize_for_speech` (only for long responses), then
:func:`preprocess_for_speech`, then :func:`split_into_chunks`.
"""

from __future__ import annotations

import regex as re

from crm_voice.lang.normalize import WHITESPACE, normalize_punctuation, spell_out_numbers
from crm_voice.orchestrator.policies import SynthesisPolicies

SENTENCE_END = ".!?؟۔"
SENTENCE_SPLIT = re.compile(rf"[{re.escape(SENTENCE_END)}]\s*")
SENTENCE_BOUNDARY = re.compile(rf"(?<=[{re.escape(SENTENCE_END)}])\s+")
PAUSE_AFTER = re.compile(rf"([{re.escape(SENTENCE_END)}،؛:])(?=\S)")
REPORT_MARKERS = ("گزارش", "report")
SUBJECT_NAME = re.compile(r"همکار\s+([^\n:]+)")
NUMERIC_DATA = re.compile(r"[0-9۰-۹٠-٩]+")
ELLIPSIS = "…"


def _sentences(text: str) -> list[str]:
    return [part.strip() for part in SENTENCE_SPLIT.split(text) if part.strip()]


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - len(ELLIPSIS)].rstrip() + ELLIPSIS


def summarize_for_speech(text: str, max_chars: int = 300) -> str:
    sentences = _sentences(text)
    if any(marker in text for marker in REPORT_MARKERS):
        summary: list[str] = []
        name = SUBJECT_NAME.search(text)
        if name:
            summary.append(f"گزارش همکار {name.group(1).strip()}")
        numbers = NUMERIC_DATA.findall(text)
        if numbers:
            summary.append(f"شامل {len(numbers)} مورد اطلاعات عددی")
        if sentences and len(sentences[0]) < 100:
            summary.append(sentences[0])
        if summary:
            return _truncate(". ".join(summary) + ".", max_chars)
    lead = ". ".join(sentences[:3])
    return _truncate(lead, max_chars)


def preprocess_for_speech(text: str) -> str:
    """Spell out numbers, normalise punctuation and leave a pause after every mark."""
    spoken = normalize_punctuation(spell_out_numbers(text))
    spoken = PAUSE_AFTER.sub(r"\1 ", spoken)
    return WHITESPACE.sub(" ", spoken).strip()


def _split_long_sentence(sentence: str, max_chars: int) -> list[str]:
    pieces: list[str] = []
    current = ""
    for word in sentence.split(" "):
        candidate = f"{current} {word}" if current else word
        if current and len(candidate) > max_chars:
            pieces.append(current)
            current = word
        else:
            current = candidate
    if current:
        pieces.append(current)
    return pieces


def split_into_chunks(text: str, max_chars: int = 150) -> list[str]:
    """Group whole sentences into chunks of at most *max_chars* characters.

    A sentence that alone exceeds the bound becomes its own chunk(s), broken only
    at word boundaries. Joining the chunks with single spaces gives back the
    whitespace-collapsed input.
    """
    collapsed = WHITESPACE.sub(" ", text).strip()
    if not collapsed:
        return []
    if len(collapsed) <= max_chars:
        return [collapsed]

    chunks: list[str] = []
    current = ""
    for sentence in SENTENCE_BOUNDARY.split(collapsed):
        if len(sentence) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_split_long_sentence(sentence, max_chars))
            continue
        candidate = f"{current} {sentence}" if current else sentence
        if len(candidate) <= max_chars:
            current = candidate
        else:
            chunks.append(current)
            current = sentence
    if current:
        chunks.append(current)
    return chunks


def prepare_speech(text: str, policies: SynthesisPolicies) -> list[str]:
    """Run the full summarize → preprocess → chunk pipeline for one response."""
    source = text
    if len(text) > policies.summary_threshold:
        source = summarize_for_speech(text, policies.summary_max_chars)
    return split_into_chunks(preprocess_for_speech(source), policies.chunk_max_chars)


__all__ = [
    "prepare_speech",
    "preprocess_for_speech",
    "split_into_chunks",
    "summarize_for_speech",
]
