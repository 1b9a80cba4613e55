"""
Duplicate-title detection run against the in-memory collection on create.

The result is advisory: callers show it as a warning and may create the
task anyway.
"""

import re
from typing import Iterable

from taskcache.models import Task

MIN_CONTAINMENT_LENGTH = 2
WORD_OVERLAP_THRESHOLD = 0.6

_WHITESPACE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    """Lowercase, trim, and collapse whitespace runs to a single space."""
    return _WHITESPACE.sub(" ", title.lower().strip())


def are_titles_similar(
    candidate: str,
    existing: str,
    min_containment_length: int = MIN_CONTAINMENT_LENGTH,
    word_overlap_threshold: float = WORD_OVERLAP_THRESHOLD,
) -> bool:
    a = normalize_title(candidate)
    b = normalize_title(existing)
    if not a:
        return False

    if a == b:
        return True

    if (
        len(a) >= min_containment_length
        and len(b) >= min_containment_length
        and (a in b or b in a)
    ):
        return True

    words_a = set(a.split(" ")) - {""}
    words_b = set(b.split(" ")) - {""}
    if not words_a or not words_b:
        return False

    ratio = len(words_a & words_b) / min(len(words_a), len(words_b))
    return ratio >= word_overlap_threshold


def find_similar_tasks(
    candidate: str,
    tasks: Iterable[Task],
    min_containment_length: int = MIN_CONTAINMENT_LENGTH,
    word_overlap_threshold: float = WORD_OVERLAP_THRESHOLD,
) -> list[Task]:
    if not normalize_title(candidate):
        return []
    return [
        task
        for task in tasks
        if are_titles_similar(
            candidate,
            task.title,
            min_containment_length=min_containment_length,
            word_overlap_threshold=word_overlap_threshold,
        )
    ]
