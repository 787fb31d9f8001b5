"""Lookalike-domain helpers used by the spoofing checks."""

from __future__ import annotations

import unicodedata
from typing import Iterable, Optional

import idna
from rapidfuzz.distance import Levenshtein

from .domains import canonicalize_domain, domain_label

# Confusable glyph -> canonical ASCII letter. Cyrillic/Greek lookalikes only.
HOMOGLYPHS: dict[str, str] = {
    "а": "a",
    "е": "e",
    "о": "o",
    "р": "p",
    "с": "c",
    "у": "y",
    "х": "x",
    "і": "i",
    "ј": "j",
    "ѕ": "s",
    "ԁ": "d",
    "ɡ": "g",
    "ո": "n",
    "ν": "v",
    "ο": "o",
    "α": "a",
    "ε": "e",
    "κ": "k",
    "τ": "t",
}

# Characters that collapse onto one representative so that "paypa1" and
# "paypal" compare equal. 1/l/i share a class.
DEFAULT_SUBSTITUTIONS: dict[str, str] = {
    "0": "o",
    "1": "i",
    "l": "i",
    "3": "e",
    "4": "a",
    "@": "a",
    "5": "s",
    "$": "s",
}


def decode_punycode(domain: str) -> str:
    """Return the Unicode form of an IDN domain; input unchanged when not IDN."""
    if "xn--" not in domain:
        return domain
    labels = []
    for label in domain.split("."):
        if label.startswith("xn--"):
            try:
                labels.append(idna.decode(label))
            except idna.IDNAError:
                labels.append(label)
        else:
            labels.append(label)
    return ".".join(labels)


def fold_homoglyphs(domain: str) -> str:
    """Map confusable Unicode glyphs (and accents) to plain ASCII where possible."""
    decoded = decode_punycode(domain.lower())
    mapped = "".join(HOMOGLYPHS.get(ch, ch) for ch in decoded)
    normalized = unicodedata.normalize("NFKD", mapped)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def substitution_key(domain: str, substitutions: Optional[dict[str, str]] = None) -> str:
    """Collapse lookalike characters onto their canonical letter."""
    table = substitutions if substitutions is not None else DEFAULT_SUBSTITUTIONS
    return "".join(table.get(ch, ch) for ch in domain.lower())


def edit_distance(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


def find_spoof_target(
    domain: str,
    trusted: Iterable[str],
    substitutions: Optional[dict[str, str]] = None,
) -> Optional[str]:
    """
    Return the trusted domain that `domain` appears to imitate, or None.

    Checks, per trusted domain and in order:
    - edit distance of 1 or 2 (typosquatting)
    - the trusted base label embedded in the candidate (brand-with-additions)
    - equality after folding homoglyphs and lookalike substitutions
    """
    candidate = canonicalize_domain(domain)
    if not candidate:
        return None
    folded = fold_homoglyphs(candidate)
    candidate_key = substitution_key(folded, substitutions)

    for legit in sorted(trusted):
        legit = (legit or "").strip().lower()
        # Subdomains of a trusted domain belong to its owner.
        if not legit or candidate == legit or candidate.endswith(f".{legit}"):
            continue

        distance = edit_distance(candidate, legit)
        if 0 < distance <= 2:
            return legit

        base = domain_label(legit)
        if base and base in candidate:
            return legit

        if candidate_key == substitution_key(legit, substitutions):
            return legit

    return None
