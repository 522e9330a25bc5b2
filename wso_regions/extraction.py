"""
State and region extraction from free text.

AddressStateExtractor pulls a US state out of an address-like field;
NameLocationExtractor pulls a region or state out of an entity name
("NorCal Open", "Ohio State Championships"). Neither raises when nothing is
found: they return None and the caller moves on to its next strategy.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

from .geography import GeographyCatalog

DISTRICT_OF_COLUMBIA = "District of Columbia"

# "Washington, DC", "Washington D.C." name the district, not the state
_WASHINGTON_DC = re.compile(r"(?<![a-z])washington,?\s+d\.?\s?c\.?(?![a-z])")
_ZIP_CODE = r"\d{5}(?:-\d{4})?"


@dataclass(frozen=True)
class StateMatch:
    """A state found in text, with the matched token and how it was matched."""

    state: str
    token: str
    kind: str  # "name" or "abbreviation"


@dataclass(frozen=True)
class NameLocation:
    """A location found in an entity name: kind is "region" or "state"."""

    kind: str
    value: str
    token: str


def _name_regex(name: str) -> Pattern[str]:
    words = [re.escape(word) for word in name.lower().split()]
    return re.compile(r"(?<![a-z])" + r"\s+".join(words) + r"(?![a-z])")


def _resolve_overlaps(candidates: List[Tuple[int, int, str]]) -> List[Tuple[int, int, str]]:
    """Keep the longest of any overlapping spans ("West Virginia" over "Virginia")."""
    accepted: List[Tuple[int, int, str]] = []
    for start, end, state in sorted(candidates, key=lambda c: (-(c[1] - c[0]), c[0])):
        if all(end <= a_start or start >= a_end for a_start, a_end, _ in accepted):
            accepted.append((start, end, state))
    return sorted(accepted)


class AddressStateExtractor:
    """
    Extract a state from an address-like string.

    Full state names are matched case-insensitively on word boundaries and
    rejected when followed by a street suffix ("Georgia St"). Overlapping
    names resolve to the longest; among separate mentions the rightmost wins,
    since addresses end with the state. Two-letter abbreviations are only
    consulted when no full name matched; they must be upper-case and
    delimited by a comma or whitespace, and directional tokens (NE) also need
    an adjacent postal code.
    """

    def __init__(self, catalog: GeographyCatalog):
        self.catalog = catalog
        self._name_patterns = [
            (state, _name_regex(state))
            for state in sorted(catalog.states.values(), key=lambda s: (-len(s), s))
        ]
        self._suffixes = set(catalog.street_suffixes)
        self._directional = set(catalog.directional_tokens)
        abbreviations = "|".join(sorted(catalog.states))
        self._abbreviation_pattern = re.compile(
            rf"(?:(?<=,)|(?<=\s))\s*({abbreviations})(?=$|[\s,.])"
        )

    def _is_street_name(self, lowered: str, end: int) -> bool:
        next_word = re.match(r"\s+([a-z]+)\.?", lowered[end:])
        return bool(next_word) and next_word.group(1) in self._suffixes

    def find_state_names(self, text: str) -> List[Tuple[int, int, str]]:
        """All accepted (start, end, state) full-name mentions, overlaps resolved."""
        lowered = text.lower()
        candidates: List[Tuple[int, int, str]] = []

        for match in _WASHINGTON_DC.finditer(lowered):
            candidates.append((match.start(), match.end(), DISTRICT_OF_COLUMBIA))

        for state, pattern in self._name_patterns:
            for match in pattern.finditer(lowered):
                if self._is_street_name(lowered, match.end()):
                    continue
                candidates.append((match.start(), match.end(), state))

        return _resolve_overlaps(candidates)

    def find_abbreviation(self, text: str, field: Optional[str] = None) -> Optional[StateMatch]:
        """Rightmost valid state abbreviation, if any."""
        stripped = text.strip()
        # A dedicated state column may hold just the abbreviation
        if field == "state" and stripped.upper() in self.catalog.states:
            abbreviation = stripped.upper()
            return StateMatch(self.catalog.states[abbreviation], abbreviation, "abbreviation")

        found: Optional[StateMatch] = None
        for match in self._abbreviation_pattern.finditer(text):
            abbreviation = match.group(1)
            if abbreviation in self._directional:
                following = text[match.end(1) :]
                if not re.match(rf"\s*,?\s*{_ZIP_CODE}(?!\d)", following):
                    continue
            found = StateMatch(self.catalog.states[abbreviation], abbreviation, "abbreviation")
        return found

    def extract(self, text: Optional[str], field: Optional[str] = None) -> Optional[StateMatch]:
        """
        Extract a state from one text field.

        Args:
            text: Field value
            field: Field name; a ``state`` field may hold a bare abbreviation

        Returns:
            StateMatch, or None if no state can be identified
        """
        if not text or not text.strip():
            return None

        names = self.find_state_names(text)
        if names:
            start, end, state = names[-1]
            return StateMatch(state, text[start:end], "name")

        return self.find_abbreviation(text, field)


class NameLocationExtractor:
    """
    Extract a location from an entity name.

    Multi-state regional patterns from the catalog are tried first, in
    catalog order; full state names second. Abbreviations are not matched in
    names, where two upper-case letters are as often initials as a state.
    """

    def __init__(self, catalog: GeographyCatalog):
        self.catalog = catalog
        self._state_patterns = [
            (state, _name_regex(state))
            for state in sorted(catalog.states.values(), key=lambda s: (-len(s), s))
        ]

    def extract(self, name: Optional[str]) -> Optional[NameLocation]:
        if not name or not name.strip():
            return None

        for pattern in self.catalog.regional_patterns:
            match = pattern.pattern.search(name)
            if match:
                return NameLocation("region", pattern.region, match.group(0))

        lowered = name.lower()
        dc = _WASHINGTON_DC.search(lowered)
        if dc:
            return NameLocation("state", DISTRICT_OF_COLUMBIA, name[dc.start() : dc.end()])

        # Longest names first, so "West Virginia" is found before "Virginia"
        for state, pattern in self._state_patterns:
            match = pattern.search(lowered)
            if match:
                return NameLocation("state", state, name[match.start() : match.end()])
        return None
