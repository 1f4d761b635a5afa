from __future__ import annotations

import re
from collections import Counter
from typing import List, Sequence

# {{name}}, {name}, %(name)s, %1$s, %s / %d
PLACEHOLDER_PATTERN = re.compile(
    r"\{\{\s*[\w.\-]+\s*\}\}"
    r"|\{[\w.\-]+\}"
    r"|%\([\w]+\)[sdif]"
    r"|%\d+\$[sdif]"
    r"|%[sdif]"
)


def extract_placeholders(text: str) -> List[str]:
    return [match.group(0) for match in PLACEHOLDER_PATTERN.finditer(text or "")]


def placeholder_counts(text: str, tokens: Sequence[str]) -> Counter[str]:
    """Count each expected token in ``text`` plus any pattern token not expected."""
    expected = set(tokens)
    counts: Counter[str] = Counter({token: _count_token(text, token) for token in expected})
    for found in extract_placeholders(text):
        if found not in expected:
            counts[found] += 1
    return +counts


def placeholders_match(source_tokens: Sequence[str], translated: str) -> bool:
    return Counter(source_tokens) == placeholder_counts(translated, source_tokens)


def _count_token(text: str, token: str) -> int:
    if not token:
        return 0
    if PLACEHOLDER_PATTERN.fullmatch(token):
        return sum(1 for found in extract_placeholders(text) if found == token)
    return text.count(token)
