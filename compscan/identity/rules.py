"""
CompScan - Identity Extraction Rules

Each rule is a pure function ``text -> value | None``. EXTRACTION_RULES lists
them in the order the extractor evaluates them. Rules never see each other's
output; a rule that needs a cleaner view of the text (card number, player)
masks the spans the other rules would claim on its own, so every rule can be
tested in isolation.

Order:
    1. year         first 18xx/19xx/20xx token in 1800-2035
    2. set_name     set catalog, longest alias first
    3. subset       subset catalog
    4. grade        grading vendor + optional numeric grade
    5. card_number  "# N", "No. N", "BDC-121", bare "121a" (first wins)
    6. parallel     parallel catalog, optional color prefix
    7. color        color catalog (team names masked)
    8. is_rookie    RC / Rookie
    9. card_type    RPA, Auto, Patch, then Refractor / Holo from the parallel
   10. team         full team name, then nickname
   11. player       2-3 capitalized-word run not claimed above, fewest
                    color or team words first, then longest

Company is derived afterwards from the set (or a bare brand mention) via the
brand-inference table, see infer_company().
"""

from __future__ import annotations

import re
from typing import Any, Callable, Mapping, NamedTuple

from compscan.identity.catalog import (
    BRANDS,
    COLOR_PREFIXED_PARALLELS,
    COLORS,
    GRADING_VENDORS,
    NAME_SHARED_WORDS,
    PARALLELS,
    SETS,
    SUBSETS,
    TEAMS,
    VOCABULARY,
    longest_first,
    phrase_pattern,
    starts_with_brand,
)
from compscan.models.identity import CardType

MIN_YEAR = 1800
MAX_YEAR = 2035


class ExtractionRule(NamedTuple):
    """A single field detector: ``apply(text)`` returns the value or None."""
    field: str
    apply: Callable[[str], Any]


def _catalog_patterns(pairs: list[tuple[str, str]]) -> list[tuple[re.Pattern[str], str]]:
    ordered = sorted(pairs, key=lambda pair: len(pair[0]), reverse=True)
    return [(phrase_pattern(alias), canonical) for alias, canonical in ordered]


def _alternation(phrases: list[str]) -> str:
    return "|".join(
        r"\s+".join(re.escape(part) for part in phrase.split())
        for phrase in longest_first(phrases)
    )


_SET_PATTERNS = _catalog_patterns([(a, e.canonical) for e in SETS for a in e.aliases])
_SUBSET_PATTERNS = _catalog_patterns([(a, e.canonical) for e in SUBSETS for a in e.aliases])
_TEAM_PATTERNS = _catalog_patterns(
    [(full, full) for full in TEAMS.values()] + list(TEAMS.items())
)
# Team spans that cannot be read as part of a name: full names and
# multi-word nicknames ("Red Sox"). Single-word nicknames stay in play.
_TEAM_SPAN_PATTERNS = _catalog_patterns(
    [(full, full) for full in TEAMS.values()]
    + [(nick, full) for nick, full in TEAMS.items() if " " in nick]
)
_BRAND_PATTERNS = _catalog_patterns([(b, b) for b in BRANDS])

_COLOR_ALT = _alternation(list(COLORS))
_COLOR_CANONICAL = {" ".join(c.lower().split()): c for c in COLORS}

_PARALLEL_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(
            rf"(?<![A-Za-z0-9])(?:({_COLOR_ALT})\s+)?{_alternation([name])}(?![A-Za-z0-9])",
            re.IGNORECASE,
        ),
        name,
    )
    for name in longest_first(list(PARALLELS))
] + [
    (
        re.compile(
            rf"(?<![A-Za-z0-9])({_COLOR_ALT})\s+{_alternation([name])}s?(?![A-Za-z0-9])",
            re.IGNORECASE,
        ),
        name,
    )
    for name in COLOR_PREFIXED_PARALLELS
]
_COLOR_RE = re.compile(rf"(?<![A-Za-z0-9])({_COLOR_ALT})(?![A-Za-z0-9])", re.IGNORECASE)
_MULTIWORD_COLORS = [c for c in COLORS if " " in c]
_MULTIWORD_COLOR_RE = re.compile(
    rf"(?<![A-Za-z0-9])(?:{_alternation(_MULTIWORD_COLORS)})(?![A-Za-z0-9])",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Year
# ---------------------------------------------------------------------------

_YEAR_RE = re.compile(r"(?<![\d/#\-])(1[89]\d{2}|20\d{2})(?![\d/])")


def find_year(text: str) -> int | None:
    """First plausible year in textual order (OCR emits top-to-bottom)."""
    for match in _YEAR_RE.finditer(text):
        year = int(match.group(1))
        if MIN_YEAR <= year <= MAX_YEAR:
            return year
    return None


# ---------------------------------------------------------------------------
# Catalog lookups
# ---------------------------------------------------------------------------

def _first_catalog_hit(text: str, patterns: list[tuple[re.Pattern[str], str]]) -> str | None:
    for pattern, canonical in patterns:
        if pattern.search(text):
            return canonical
    return None


def find_set(text: str) -> str | None:
    return _first_catalog_hit(text, _SET_PATTERNS)


def find_subset(text: str) -> str | None:
    return _first_catalog_hit(text, _SUBSET_PATTERNS)


def find_team(text: str) -> str | None:
    return _first_catalog_hit(text, _TEAM_PATTERNS)


def _mask_teams(text: str) -> str:
    for pattern, _ in _TEAM_PATTERNS:
        text = pattern.sub("\n", text)
    return text


# ---------------------------------------------------------------------------
# Grade
# ---------------------------------------------------------------------------

_GRADE_RE = re.compile(
    r"(?<![A-Za-z])(PSA|BGS|BVG|SGC|CGC|CSG|HGA|BECKETT)(?![A-Za-z])"
    r"(?:\s*(?:GEM\s*(?:MINT|MT)|PRISTINE|NM-MT|MINT|NM|MT))?"
    r"(?:\s*(10(?:\.0)?|[1-9](?:\.5)?)(?![\d.]))?",
    re.IGNORECASE,
)


def find_grade(text: str) -> str | None:
    """'PSA 10', 'BGS 9.5', or the bare vendor when no numeric grade follows."""
    match = _GRADE_RE.search(text)
    if not match:
        return None
    vendor = GRADING_VENDORS[match.group(1).lower()]
    number = match.group(2)
    if number and number.endswith(".0"):
        number = number[:-2]
    return f"{vendor} {number}" if number else vendor


# ---------------------------------------------------------------------------
# Card number
# ---------------------------------------------------------------------------

_SERIAL_RE = re.compile(r"\d*\s*/\s*\d+")

NUMBERING_CONVENTIONS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("hash", re.compile(r"#\s*([A-Z]{0,5}-?\d{1,4}[A-Z]?)(?![A-Za-z0-9])", re.IGNORECASE)),
    ("no", re.compile(r"(?<![A-Za-z])No\.?\s*(\d{1,4}[A-Z]?)(?![A-Za-z0-9])", re.IGNORECASE)),
    ("code", re.compile(
        r"(?<![A-Za-z0-9\-])([A-Z]{1,5}-\d{1,4}[A-Z]?)(?![A-Za-z0-9\-])", re.IGNORECASE,
    )),
    ("bare", re.compile(r"(?<![A-Za-z0-9#/.\-])(\d{1,4}[A-Z]?)(?![A-Za-z0-9/.\-])", re.IGNORECASE)),
)


def find_card_number(text: str) -> str | None:
    """
    Card number by the first numbering convention that matches.

    Serial numbering (25/99), grades (PSA 10) and years are masked first so
    they are never mistaken for the card number.
    """
    masked = _SERIAL_RE.sub(" ", text)
    masked = _GRADE_RE.sub(" ", masked)
    masked = _YEAR_RE.sub(" ", masked)
    for _name, pattern in NUMBERING_CONVENTIONS:
        match = pattern.search(masked)
        if match:
            return match.group(1).upper()
    return None


# ---------------------------------------------------------------------------
# Parallel / color / rookie / card type
# ---------------------------------------------------------------------------

def _canonical_color(raw: str) -> str:
    return _COLOR_CANONICAL.get(" ".join(raw.lower().split()), raw.title())


def find_parallel(text: str) -> str | None:
    """Parallel name, keeping a leading color ("Gold Refractor", "Silver Prizm")."""
    masked = _mask_teams(text)
    for pattern, name in _PARALLEL_PATTERNS:
        match = pattern.search(masked)
        if match:
            color = match.group(1)
            return f"{_canonical_color(color)} {name}" if color else name
    return None


def find_color(text: str) -> str | None:
    match = _COLOR_RE.search(_mask_teams(text))
    return _canonical_color(match.group(1)) if match else None


_ROOKIE_RE = re.compile(r"(?<![A-Za-z])(RC|ROOKIES?)(?![A-Za-z])", re.IGNORECASE)


def find_rookie(text: str) -> bool:
    return bool(_ROOKIE_RE.search(text))


_RPA_RE = re.compile(r"(?<![A-Za-z])RPA(?![A-Za-z])", re.IGNORECASE)
_AUTO_RE = re.compile(
    r"(?<![A-Za-z])(auto|autos|autograph|autographs|autographed|signed|signatures?)(?![A-Za-z])",
    re.IGNORECASE,
)
_PATCH_RE = re.compile(
    r"(?<![A-Za-z])(patch|patches|relics?|jersey|swatch|memorabilia|game[\s-]+used|player[\s-]+worn)"
    r"(?![A-Za-z])",
    re.IGNORECASE,
)


def find_card_type(text: str) -> CardType | None:
    has_auto = bool(_AUTO_RE.search(text))
    has_patch = bool(_PATCH_RE.search(text))
    if _RPA_RE.search(text) or (has_auto and has_patch):
        return CardType.RPA
    if has_auto:
        return CardType.AUTO
    if has_patch:
        return CardType.PATCH

    parallel = (find_parallel(text) or "").lower()
    if "fractor" in parallel:
        return CardType.REFRACTOR
    if "holo" in parallel:
        return CardType.HOLO
    return None


# ---------------------------------------------------------------------------
# Player
# ---------------------------------------------------------------------------

_TOKEN_PUNCT = ",;:!?\"()[]{}<>"
_NAME_WORD_RE = re.compile(r"^(?:[A-Z][A-Za-z'\-]*[A-Za-z]\.?|[A-Z]\.(?:[A-Z]\.)*)$")
_HINT_WORD_RE = re.compile(r"^[A-Za-z][A-Za-z'.\-]*$")
_HINT_SEPARATOR_RE = re.compile(r"\s+[-–—|•]\s+|[|:,(\[•]")

_CLAIMED_SPAN_PATTERNS: list[re.Pattern[str]] = (
    [p for p, _ in _SET_PATTERNS]
    + [p for p, _ in _SUBSET_PATTERNS]
    + [p for p, _ in _TEAM_SPAN_PATTERNS]
    + [p for p, _ in _BRAND_PATTERNS]
    + [p for p, _ in _PARALLEL_PATTERNS]
    + [_GRADE_RE, _MULTIWORD_COLOR_RE]
)


def _is_name_word(token: str) -> bool:
    return bool(_NAME_WORD_RE.match(token)) and token.lower().rstrip(".") not in VOCABULARY


def _shared_word_count(candidate: str) -> int:
    return sum(1 for word in candidate.split() if word.lower().rstrip(".") in NAME_SHARED_WORDS)


def _windows(run: list[str]) -> list[str]:
    found: list[str] = []
    for start in range(len(run)):
        for size in (3, 2):
            if start + size <= len(run):
                found.append(" ".join(run[start:start + size]))
    return found


def format_name(name: str) -> str:
    """Title-case names OCR'd in a single case; leave mixed case alone."""
    if name.isupper() or name.islower():
        return name.title()
    return name


def name_candidates(text: str) -> list[str]:
    """
    All 2-3 word capitalized runs left after masking catalog and keyword spans.

    Single-word colors and team nicknames are kept in runs since they double
    as names, but a run made only of them is not a candidate.
    """
    masked = text
    for pattern in _CLAIMED_SPAN_PATTERNS:
        masked = pattern.sub("\n", masked)

    candidates: list[str] = []
    for line in masked.splitlines():
        run: list[str] = []
        for raw in line.split():
            token = raw.strip(_TOKEN_PUNCT)
            if _is_name_word(token):
                run.append(token)
                continue
            candidates.extend(_windows(run))
            run = []
        candidates.extend(_windows(run))
    return [
        c for c in candidates
        if not starts_with_brand(c) and _shared_word_count(c) < len(c.split())
    ]


def find_player(text: str) -> str | None:
    """
    Candidate with the fewest color or team words, then the longest.

    "Shohei Ohtani Angels" yields "Shohei Ohtani"; "Jalen Green" survives
    because nothing cleaner competes with it.
    """
    candidates = name_candidates(text)
    if not candidates:
        return None
    best = min(candidates, key=lambda c: (_shared_word_count(c), -len(c)))
    return format_name(best)


def player_from_hint(hint: str | None) -> str | None:
    """Name from an auxiliary signal such as a page title: text before the first separator."""
    if not hint:
        return None
    head = _HINT_SEPARATOR_RE.split(hint.strip(), maxsplit=1)[0].strip()
    words = head.split()
    if not 2 <= len(words) <= 3:
        return None
    if not all(_HINT_WORD_RE.match(w) for w in words):
        return None
    reserved = VOCABULARY | NAME_SHARED_WORDS
    if all(w.lower().rstrip(".") in reserved for w in words) or starts_with_brand(head):
        return None
    return format_name(head)


# ---------------------------------------------------------------------------
# Company (derived)
# ---------------------------------------------------------------------------

def _lookup_brand(value: str, brand_table: Mapping[str, str]) -> str | None:
    for key in longest_first(list(brand_table)):
        if phrase_pattern(key).search(value):
            return brand_table[key]
    return None


def infer_company(
    set_name: str | None,
    text: str,
    brand_table: Mapping[str, str],
) -> str | None:
    """
    Manufacturer from the matched set via the brand-inference table, or from a
    bare brand mention ("Panini", "Upper Deck") when no set matched.
    """
    if set_name:
        company = _lookup_brand(set_name, brand_table)
        if company:
            return company

    brand = _first_catalog_hit(text, _BRAND_PATTERNS)
    if brand is None:
        return None
    return brand_table.get(brand, brand.title())


EXTRACTION_RULES: tuple[ExtractionRule, ...] = (
    ExtractionRule("year", find_year),
    ExtractionRule("set_name", find_set),
    ExtractionRule("subset", find_subset),
    ExtractionRule("grade", find_grade),
    ExtractionRule("card_number", find_card_number),
    ExtractionRule("parallel", find_parallel),
    ExtractionRule("color", find_color),
    ExtractionRule("is_rookie", find_rookie),
    ExtractionRule("card_type", find_card_type),
    ExtractionRule("team", find_team),
    ExtractionRule("player", find_player),
)
