"""Text heuristics for mapping form labels to configured answers.

Everything here is independent of the browser so the label/answer logic can
be exercised directly.
"""
from __future__ import annotations

import re
from typing import Callable, Iterable, Sequence, TypeVar

from jobbot.errors import ApplicationTimeout
from jobbot.log import get_logger
from jobbot.models import Answer

log = get_logger(__name__)

T = TypeVar("T")

_REQUIRED_SUFFIX = re.compile(r"Required$")
_WHITESPACE = re.compile(r"\s\s+")
_TRAILING_PUNCT = re.compile(r"[^a-zA-Z0-9?]\s*$")

# Labels that belong to the resume picker, not to a question
IGNORED_LABEL_PREFIXES: tuple[str, ...] = ("deselect resume", "change resume")


def normalize_question_text(text: str | None) -> str:
    """Clean a raw label into comparable question text.

    Strips LinkedIn's visually hidden "Required" suffix, collapses runs of
    whitespace, collapses labels rendered twice ("Q? Q?" -> "Q?") and drops a
    trailing punctuation mark such as "*" or ":".
    """
    if not text:
        return ""
    normalized = _REQUIRED_SUFFIX.sub("", text.strip()).strip()
    normalized = _WHITESPACE.sub(" ", normalized)
    normalized = " ".join(normalized.split())

    half = len(normalized) // 2
    if len(normalized) > 10:
        first, second = normalized[:half].strip(), normalized[half:].strip()
        if first == second:
            normalized = first

    normalized = _TRAILING_PUNCT.sub("", normalized)
    return normalized.strip()


def is_ignored_label(normalized: str) -> bool:
    low = normalized.lower()
    return not low or low.startswith(IGNORED_LABEL_PREFIXES)


def questions_match(a: str, b: str) -> bool:
    """Case-insensitive containment in either direction; empty never matches."""
    a_low = normalize_question_text(a).lower()
    b_low = normalize_question_text(b).lower()
    if not a_low or not b_low:
        return False
    return a_low in b_low or b_low in a_low


def find_answer(question: str, answers: Iterable[Answer]) -> Answer | None:
    """First configured answer whose question matches *question*."""
    for answer in answers:
        if questions_match(question, answer.question):
            return answer
    return None


def option_matches(answer_text: str, option_text: str) -> bool:
    """Choice options are selected on exact (case-insensitive) text equality."""
    want = answer_text.strip().lower()
    return bool(want) and want == normalize_question_text(option_text).lower()


def match_select_option(options: Sequence[tuple[str, str]], answer_text: str) -> str | None:
    """Pick the <option> whose value or text contains the answer.

    *options* are (value, text) pairs. Returns the value to select (the text
    when the option has no value), or None.
    """
    want = answer_text.strip().lower()
    if not want:
        return None
    for value, text in options:
        value_low = (value or "").strip().lower()
        text_low = (text or "").strip().lower()
        if (value_low and want in value_low) or (text_low and want in text_low):
            return value or text
    return None


def run_strategies(
    strategies: Sequence[tuple[str, Callable[[T], bool]]],
    target: T,
) -> str | None:
    """Try each (name, strategy) in order; return the name of the first success.

    A strategy that raises counts as a failure and the chain continues,
    except for an expired application deadline.
    """
    for name, strategy in strategies:
        try:
            if strategy(target):
                return name
        except ApplicationTimeout:
            raise
        except Exception as exc:
            log.debug("Strategy %s failed: %s", name, exc)
    return None
