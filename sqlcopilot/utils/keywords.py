"""
Keyword Matching

Bilingual keyword sets used by result validation and conversation
analysis. ASCII terms match on word boundaries, so "it" does not match
inside "with"; CJK terms match as substrings. Matching is
case-insensitive and longer terms win over their prefixes ("它们" before
"它").
"""

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class KeywordSet:
    """
    An ordered set of cue terms.

    Usage:
        pronouns = KeywordSet(("it", "they", "它", "它们"))
        pronouns.matches("how much did it cost")   # True
        pronouns.replace("how much did it cost", "Acme")  # "how much did Acme cost"
    """

    terms: tuple[str, ...]
    _pattern: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        alternatives = [
            rf"\b{re.escape(term)}\b" if term.isascii() else re.escape(term)
            for term in sorted(self.terms, key=len, reverse=True)
        ]
        pattern = re.compile("|".join(alternatives) or r"(?!x)x", re.IGNORECASE)
        object.__setattr__(self, "_pattern", pattern)

    def matches(self, text: str) -> bool:
        return self._pattern.search(text) is not None

    def find_all(self, text: str) -> list[str]:
        """Matched terms in order of appearance."""
        return [match.group(0) for match in self._pattern.finditer(text)]

    def replace(self, text: str, replacement: str) -> str:
        return self._pattern.sub(lambda _match: replacement, text)
