"""Structural checks for generated answers.

The persona prompt asks for numbered bold `###` headings and single-line,
multi-sentence bullets without bold. This module verifies that shape after
generation instead of trusting the prompt alone.
"""

from __future__ import annotations

import re

_HEADING = re.compile(r"^### \d+\. \*\*[^*\n]+\*\*\s*$")
_ANY_HEADING = re.compile(r"^#{1,6}\s")
_BULLET = re.compile(r"^\s*[-*]\s+(?P<body>.*)$")
_SENTENCE_END = re.compile(r"[.!?](?=\s|$)")


def count_sentences(text: str) -> int:
    return len(_SENTENCE_END.findall(text.strip()))


def find_format_violations(answer: str) -> list[str]:
    """Return human-readable violations; an empty list means the answer conforms."""
    violations: list[str] = []
    headings = 0

    for number, line in enumerate(answer.splitlines(), start=1):
        if _ANY_HEADING.match(line):
            if _HEADING.match(line):
                headings += 1
            else:
                violations.append(
                    f"line {number}: heading must look like '### 1. **Title**'"
                )
            continue

        bullet = _BULLET.match(line)
        if bullet is None:
            continue
        body = bullet.group("body")
        if "**" in body:
            violations.append(f"line {number}: bullet contains bold markers")
        if count_sentences(body) < 2:
            violations.append(f"line {number}: bullet has fewer than two sentences")

    if headings == 0:
        violations.append("answer has no numbered section heading")
    return violations
