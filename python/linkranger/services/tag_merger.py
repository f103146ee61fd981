"""Priority-ordered tag merging.

Groups are merged in the order given; callers pass domain tags first, then AI
tags, main entities, candidate entities and heuristic key terms. Earlier
groups are considered more reliably on-topic.
"""

import re
from collections.abc import Iterable

# Latin words use ASCII boundaries; Japanese runs are taken whole
_CANDIDATE_PATTERN = re.compile(
    r"(?<![A-Za-z0-9_])[A-Za-z][A-Za-z0-9]+(?![A-Za-z0-9_])|[ァ-ヴー]{2,}|[一-龠々]{2,}"
)


def extract_candidate_entities(*texts: str | None, max_length: int | None = None) -> list[str]:
    """Latin words (2+ chars), katakana runs (2+) and kanji runs (2+), de-duplicated.

    Matches longer than max_length are dropped.
    """
    found: dict[str, None] = {}
    for text in texts:
        if not text:
            continue
        for match in _CANDIDATE_PATTERN.findall(text):
            if max_length is not None and len(match) > max_length:
                continue
            found.setdefault(match, None)
    return list(found)


def merge_tags(max_tags: int, *groups: Iterable[str]) -> list[str]:
    """Merge tag groups into one ordered, de-duplicated list of at most max_tags.

    Empty and whitespace-only tags are skipped; tags are compared after trimming.
    """
    merged: dict[str, None] = {}
    if max_tags <= 0:
        return []

    for group in groups:
        for tag in group:
            tag = (tag or "").strip()
            if not tag or tag in merged:
                continue
            merged[tag] = None
            if len(merged) >= max_tags:
                return list(merged)

    return list(merged)
