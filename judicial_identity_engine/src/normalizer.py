"""
Identity Normalizer for the Judicial Identity Engine.

Turns raw judge names and free-text jurisdiction strings into comparable
keys. Everything here is deterministic and side-effect free: the normalizer
only reads the jurisdiction hierarchy it is given.
"""

import logging
import re
from typing import Optional, List, Set

from .jurisdiction import JurisdictionHierarchy, canonical_token, ROOT, STATE_CODES
from .models import NormalizedIdentity, UNRESOLVED

logger = logging.getLogger(__name__)

# Leading titles stripped from names
HONORIFICS = {
    "the", "hon", "honorable", "honourable", "judge", "justice", "chief",
    "associate", "presiding", "senior", "magistrate", "commissioner",
    "referee", "mr", "mrs", "ms", "dr",
}

# Trailing generational / professional suffixes
SUFFIXES = {"jr", "sr", "ii", "iii", "iv", "v", "esq", "phd"}

_SOUNDEX_CODES = {
    **dict.fromkeys("bfpv", "1"),
    **dict.fromkeys("cgjkqsxz", "2"),
    **dict.fromkeys("dt", "3"),
    "l": "4",
    **dict.fromkeys("mn", "5"),
    "r": "6",
}


def soundex(word: str) -> str:
    """
    American Soundex code of a word.

    Examples:
        >>> soundex("Robert")
        'R163'
        >>> soundex("Rupert")
        'R163'
        >>> soundex("Tymczak")
        'T522'
    """
    letters = [c for c in word.lower() if c.isalpha()]
    if not letters:
        return ""

    first = letters[0]
    code = [first.upper()]
    prev = _SOUNDEX_CODES.get(first, "")
    for c in letters[1:]:
        digit = _SOUNDEX_CODES.get(c, "")
        if digit and digit != prev:
            code.append(digit)
        # h and w do not separate letters with the same code
        if c not in "hw":
            prev = digit
        if len(code) == 4:
            break
    return "".join(code).ljust(4, "0")


def split_camel_case(text: str) -> str:
    """Insert spaces at lower-to-upper case boundaries ("LosAngeles")."""
    return re.sub(r"(?<=[a-z])(?=[A-Z])", " ", text)


class IdentityNormalizer:
    """
    Canonicalizes judge names and jurisdiction strings.

    Name keys drop honorifics, suffixes, punctuation and middle initials;
    phonetic keys combine the surname's Soundex code with the first initial.
    Jurisdiction keys are canonical hierarchy paths or ``unresolved``.
    """

    def __init__(self, hierarchy: Optional[JurisdictionHierarchy] = None):
        """
        Initialize the normalizer.

        Args:
            hierarchy: Jurisdiction tree used to resolve keys. Without one,
                syntactically valid keys are returned unchecked.
        """
        self.hierarchy = hierarchy

    def normalize(
        self, raw_name: Optional[str], raw_jurisdiction: Optional[str]
    ) -> NormalizedIdentity:
        """
        Normalize a raw name and jurisdiction.

        Args:
            raw_name: Judge name as delivered by the source.
            raw_jurisdiction: Free-text jurisdiction path.

        Returns:
            NormalizedIdentity with exact, phonetic and jurisdiction keys.
        """
        tokens = self._name_tokens(raw_name)
        jurisdiction_key = self.normalize_jurisdiction(raw_jurisdiction)

        if not tokens:
            return NormalizedIdentity("", "", jurisdiction_key)

        first, last = tokens[0], tokens[-1]
        return NormalizedIdentity(
            name_key=" ".join(self._drop_middle_initials(tokens)),
            phonetic_key=self.phonetic_key(tokens),
            jurisdiction_key=jurisdiction_key,
            first_name=first,
            last_name=last,
        )

    # ==================== Names ====================

    def normalize_name(self, raw_name: Optional[str]) -> str:
        """Exact name key for a raw name ("Hon. Jane A. Smith" -> "jane smith")."""
        return " ".join(self._drop_middle_initials(self._name_tokens(raw_name)))

    def name_variations(self, raw_name: Optional[str]) -> Set[str]:
        """
        Name keys a judge should be indexed under.

        Includes the exact key, the key with middle names kept, and the
        first-last form.
        """
        tokens = self._name_tokens(raw_name)
        if not tokens:
            return set()
        variations = {
            " ".join(self._drop_middle_initials(tokens)),
            " ".join(tokens),
        }
        if len(tokens) > 2:
            variations.add(f"{tokens[0]} {tokens[-1]}")
        return {v for v in variations if v}

    @staticmethod
    def phonetic_key(tokens: List[str]) -> str:
        if not tokens:
            return ""
        return f"{soundex(tokens[-1])}-{tokens[0][0]}"

    def _name_tokens(self, raw_name: Optional[str]) -> List[str]:
        if not isinstance(raw_name, str) or not raw_name.strip():
            return []

        name = raw_name.lower().strip()

        # "Smith, Jane A." -> "jane a. smith"; "Smith, Jr." stays in order
        if "," in name:
            parts = [p.strip() for p in name.split(",") if p.strip()]
            named = [p for p in parts if self._clean(p) not in SUFFIXES]
            if len(named) == 2:
                name = f"{named[1]} {named[0]}"
            else:
                name = " ".join(named)

        name = re.sub(r"[^\w\s-]", " ", name.replace(".", " "))
        tokens = [t.strip("-") for t in name.split()]
        tokens = [t for t in tokens if t]

        while tokens and tokens[0] in HONORIFICS:
            tokens.pop(0)
        while len(tokens) > 1 and tokens[-1] in SUFFIXES:
            tokens.pop()
        return tokens

    @staticmethod
    def _drop_middle_initials(tokens: List[str]) -> List[str]:
        if len(tokens) <= 2:
            return list(tokens)
        middle = [t for t in tokens[1:-1] if len(t) > 1]
        return [tokens[0], *middle, tokens[-1]]

    @staticmethod
    def _clean(text: str) -> str:
        return re.sub(r"[^\w]", "", text)

    # ==================== Jurisdictions ====================

    def normalize_jurisdiction(self, raw: Optional[str]) -> str:
        """
        Map a free-text jurisdiction onto a canonical hierarchy key.

        Accepted forms include ``CA/LosAngeles/Superior``,
        ``California > Los Angeles``, ``Los Angeles County, California`` and
        ``Federal - Central District of California``.

        Args:
            raw: Raw jurisdiction text.

        Returns:
            Canonical key, or ``unresolved`` if it cannot be mapped.
        """
        key = self.canonical_path(raw)
        if key is None:
            return UNRESOLVED
        if self.hierarchy is None:
            return key
        if key == ROOT or self.hierarchy.has_node(key):
            return key
        logger.debug("Unresolved jurisdiction %r (key %s)", raw, key)
        return UNRESOLVED

    def canonical_path(self, raw: Optional[str]) -> Optional[str]:
        """Canonical key of a jurisdiction string, without a hierarchy lookup."""
        tokens = self._jurisdiction_tokens(raw)
        if not tokens:
            return None
        return "/".join(tokens)

    def _jurisdiction_tokens(self, raw: Optional[str]) -> List[str]:
        if not isinstance(raw, str) or not raw.strip():
            return []
        text = re.sub(r"\s+", " ", raw.strip())

        federal = re.match(r"^federal\b\s*(?:[-:/>]\s*(.+))?$", text, re.IGNORECASE)
        if federal:
            district = federal.group(1)
            if not district:
                return ["federal"]
            return ["federal", self._slug(district)]

        county = re.match(r"^(.+?)\s+county\s*,\s*(.+)$", text, re.IGNORECASE)
        if county:
            parts = [county.group(2), county.group(1)]
        elif "/" in text or ">" in text:
            parts = re.split(r"\s*[/>]\s*", text)
        elif "," in text:
            parts = [p for p in (s.strip() for s in text.split(",")) if p]
            if self._is_state(parts[-1]) and not self._is_state(parts[0]):
                parts = list(reversed(parts))
        else:
            parts = [text]

        tokens: List[str] = []
        for part in parts:
            part = split_camel_case(part.strip())
            part = re.sub(r"[^\w\s-]", " ", part)
            part = re.sub(r"\s+", " ", part).strip().lower()
            if not part:
                continue
            token = canonical_token(part, depth=len(tokens))
            if token == ROOT and not tokens:
                continue
            tokens.append(token)
        return tokens

    @staticmethod
    def _is_state(text: str) -> bool:
        return canonical_token(text.strip().lower(), depth=0) in STATE_CODES

    @staticmethod
    def _slug(text: str) -> str:
        text = re.sub(r"[^\w\s-]", " ", text.lower())
        return re.sub(r"\s+", "-", text.strip())

