"""
CompScan - Card Vocabulary Catalog

Fixed lookup tables used by the extraction rules: product sets (with aliases),
subsets, parallels, colors, teams, the keyword vocabulary that can never be
part of a player name and the color or team words that can be.

Bump CATALOG_VERSION whenever a table changes so logged identities can be
traced back to the vocabulary that produced them.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import NamedTuple

CATALOG_VERSION = "2025-01"


class CatalogEntry(NamedTuple):
    """A canonical name and the spellings that map to it."""
    canonical: str
    aliases: tuple[str, ...]


# ---------------------------------------------------------------------------
# Product sets. Aliases are matched longest-first, so "Topps Chrome Update"
# wins over "Topps Chrome", which wins over "Topps".
# ---------------------------------------------------------------------------

SETS: tuple[CatalogEntry, ...] = (
    CatalogEntry("Topps Chrome Update", ("topps chrome update",)),
    CatalogEntry("Topps Chrome", ("topps chrome",)),
    CatalogEntry("Topps Update", ("topps update",)),
    CatalogEntry("Topps Heritage", ("topps heritage",)),
    CatalogEntry("Topps Finest", ("topps finest", "finest")),
    CatalogEntry("Stadium Club", ("topps stadium club", "stadium club")),
    CatalogEntry("Allen & Ginter", ("topps allen & ginter", "allen & ginter", "allen and ginter")),
    CatalogEntry("Gypsy Queen", ("topps gypsy queen", "gypsy queen")),
    CatalogEntry("Bowman Draft", ("bowman draft chrome", "bowman chrome draft", "bowman draft")),
    CatalogEntry("Bowman Chrome", ("bowman chrome",)),
    CatalogEntry("Bowman's Best", ("bowman's best", "bowmans best")),
    CatalogEntry("Bowman", ("bowman",)),
    CatalogEntry("Prizm", ("panini prizm", "prizm")),
    CatalogEntry("Select", ("panini select", "select")),
    CatalogEntry("Donruss Optic", ("panini donruss optic", "donruss optic", "optic")),
    CatalogEntry("Mosaic", ("panini mosaic", "mosaic")),
    CatalogEntry("Donruss", ("panini donruss", "donruss")),
    CatalogEntry("Contenders", ("panini contenders", "contenders")),
    CatalogEntry("National Treasures", ("panini national treasures", "national treasures")),
    CatalogEntry("Flawless", ("panini flawless", "flawless")),
    CatalogEntry("Immaculate", ("panini immaculate", "immaculate")),
    CatalogEntry("Spectra", ("panini spectra", "spectra")),
    CatalogEntry("Chronicles", ("panini chronicles", "chronicles")),
    CatalogEntry("Absolute", ("panini absolute",)),
    CatalogEntry("NBA Hoops", ("panini nba hoops", "nba hoops", "hoops")),
    CatalogEntry("SP Authentic", ("upper deck sp authentic", "sp authentic")),
    CatalogEntry("O-Pee-Chee", ("o-pee-chee", "opc")),
    CatalogEntry("Fleer Ultra", ("fleer ultra",)),
)

# Bare manufacturer mentions. Used for company when no set matched.
BRANDS: tuple[str, ...] = (
    "upper deck", "topps", "panini", "bowman", "donruss", "fleer", "leaf", "skybox",
)

SUBSETS: tuple[CatalogEntry, ...] = (
    CatalogEntry("Rated Rookie", ("rated rookie", "rated rookies")),
    CatalogEntry("Young Guns", ("young guns",)),
    CatalogEntry("Draft Picks", ("draft picks",)),
    CatalogEntry("Future Stars", ("future stars",)),
    CatalogEntry("Rookie Debut", ("rookie debut",)),
    CatalogEntry("Chrome Prospects", ("chrome prospects",)),
    CatalogEntry("Prospects", ("prospects",)),
    CatalogEntry("Downtown", ("downtown",)),
    CatalogEntry("Kaboom", ("kaboom",)),
    CatalogEntry("Color Blast", ("color blast",)),
    CatalogEntry("Stained Glass", ("stained glass",)),
    CatalogEntry("Rookie Ticket", ("rookie ticket",)),
)

# Parallels that stand on their own.
PARALLELS: tuple[str, ...] = (
    "Superfractor", "X-Fractor", "Refractor", "Cracked Ice", "Gold Vinyl",
    "Shimmer", "Mojo", "Sapphire", "Atomic", "Holo", "Speckle", "Sepia",
    "Pulsar", "Disco", "Scope", "Hyper", "Velocity", "Lava", "Raywave",
    "Mini Diamond", "Camo", "Snakeskin", "Tie-Dye", "Wave", "Shock",
)

# Finishes that only name a parallel with a color in front ("Silver Prizm").
COLOR_PREFIXED_PARALLELS: tuple[str, ...] = ("Prizm", "Ice")

COLORS: tuple[str, ...] = (
    "Rose Gold", "Sky Blue", "Light Blue", "Neon Green", "Neon Orange",
    "Gold", "Silver", "Black", "Blue", "Green", "Red", "Orange", "Purple",
    "Pink", "Yellow", "Aqua", "Teal", "Bronze", "White", "Platinum",
    "Ruby", "Emerald",
)

GRADING_VENDORS: dict[str, str] = {
    "psa": "PSA",
    "bgs": "BGS",
    "beckett": "BGS",
    "bvg": "BVG",
    "sgc": "SGC",
    "cgc": "CGC",
    "csg": "CSG",
    "hga": "HGA",
}


# ---------------------------------------------------------------------------
# Teams: nickname -> full name (MLB, NBA, NFL, NHL). Nicknames shared
# across leagues resolve to the first league listed.
# ---------------------------------------------------------------------------

TEAMS: dict[str, str] = {
    # MLB
    "Diamondbacks": "Arizona Diamondbacks", "Braves": "Atlanta Braves",
    "Orioles": "Baltimore Orioles", "Red Sox": "Boston Red Sox",
    "Cubs": "Chicago Cubs", "White Sox": "Chicago White Sox",
    "Reds": "Cincinnati Reds", "Guardians": "Cleveland Guardians",
    "Rockies": "Colorado Rockies", "Tigers": "Detroit Tigers",
    "Astros": "Houston Astros", "Royals": "Kansas City Royals",
    "Angels": "Los Angeles Angels", "Dodgers": "Los Angeles Dodgers",
    "Marlins": "Miami Marlins", "Brewers": "Milwaukee Brewers",
    "Twins": "Minnesota Twins", "Mets": "New York Mets",
    "Yankees": "New York Yankees", "Athletics": "Oakland Athletics",
    "Phillies": "Philadelphia Phillies", "Pirates": "Pittsburgh Pirates",
    "Padres": "San Diego Padres", "Mariners": "Seattle Mariners",
    "Cardinals": "St. Louis Cardinals", "Rays": "Tampa Bay Rays",
    "Rangers": "Texas Rangers", "Blue Jays": "Toronto Blue Jays",
    "Nationals": "Washington Nationals",
    # NBA
    "Hawks": "Atlanta Hawks", "Celtics": "Boston Celtics",
    "Nets": "Brooklyn Nets", "Hornets": "Charlotte Hornets",
    "Bulls": "Chicago Bulls", "Cavaliers": "Cleveland Cavaliers",
    "Mavericks": "Dallas Mavericks", "Nuggets": "Denver Nuggets",
    "Pistons": "Detroit Pistons", "Warriors": "Golden State Warriors",
    "Rockets": "Houston Rockets", "Pacers": "Indiana Pacers",
    "Clippers": "Los Angeles Clippers", "Lakers": "Los Angeles Lakers",
    "Grizzlies": "Memphis Grizzlies", "Heat": "Miami Heat",
    "Bucks": "Milwaukee Bucks", "Timberwolves": "Minnesota Timberwolves",
    "Pelicans": "New Orleans Pelicans", "Knicks": "New York Knicks",
    "Thunder": "Oklahoma City Thunder", "Magic": "Orlando Magic",
    "76ers": "Philadelphia 76ers", "Suns": "Phoenix Suns",
    "Trail Blazers": "Portland Trail Blazers", "Kings": "Sacramento Kings",
    "Spurs": "San Antonio Spurs", "Raptors": "Toronto Raptors",
    "Jazz": "Utah Jazz", "Wizards": "Washington Wizards",
    # NFL
    "Bills": "Buffalo Bills", "Dolphins": "Miami Dolphins",
    "Patriots": "New England Patriots", "Jets": "New York Jets",
    "Ravens": "Baltimore Ravens", "Bengals": "Cincinnati Bengals",
    "Browns": "Cleveland Browns", "Steelers": "Pittsburgh Steelers",
    "Texans": "Houston Texans", "Colts": "Indianapolis Colts",
    "Jaguars": "Jacksonville Jaguars", "Titans": "Tennessee Titans",
    "Broncos": "Denver Broncos", "Chiefs": "Kansas City Chiefs",
    "Raiders": "Las Vegas Raiders", "Chargers": "Los Angeles Chargers",
    "Cowboys": "Dallas Cowboys", "Giants": "New York Giants",
    "Eagles": "Philadelphia Eagles", "Commanders": "Washington Commanders",
    "Bears": "Chicago Bears", "Lions": "Detroit Lions",
    "Packers": "Green Bay Packers", "Vikings": "Minnesota Vikings",
    "Falcons": "Atlanta Falcons", "Panthers": "Carolina Panthers",
    "Saints": "New Orleans Saints", "Buccaneers": "Tampa Bay Buccaneers",
    "49ers": "San Francisco 49ers", "Seahawks": "Seattle Seahawks",
    "Rams": "Los Angeles Rams",
    # NHL
    "Bruins": "Boston Bruins", "Sabres": "Buffalo Sabres",
    "Red Wings": "Detroit Red Wings", "Canadiens": "Montreal Canadiens",
    "Senators": "Ottawa Senators", "Maple Leafs": "Toronto Maple Leafs",
    "Hurricanes": "Carolina Hurricanes", "Blue Jackets": "Columbus Blue Jackets",
    "Devils": "New Jersey Devils", "Islanders": "New York Islanders",
    "Flyers": "Philadelphia Flyers", "Penguins": "Pittsburgh Penguins",
    "Capitals": "Washington Capitals", "Blackhawks": "Chicago Blackhawks",
    "Avalanche": "Colorado Avalanche", "Predators": "Nashville Predators",
    "Flames": "Calgary Flames", "Oilers": "Edmonton Oilers",
    "Canucks": "Vancouver Canucks", "Sharks": "San Jose Sharks",
    "Golden Knights": "Vegas Golden Knights", "Kraken": "Seattle Kraken",
}


# ---------------------------------------------------------------------------
# Words that can never be part of a player name
# ---------------------------------------------------------------------------

KEYWORDS: frozenset[str] = frozenset({
    "rc", "rookie", "rookies", "auto", "autos", "autograph", "autographed",
    "signed", "signature", "patch", "relic", "jersey", "rpa", "card", "cards",
    "gem", "mint", "mt", "nm", "raw", "graded", "base", "insert", "inserts",
    "sp", "ssp", "variation", "parallel", "numbered", "serial", "prospect",
    "draft", "chrome", "edition", "first", "official", "licensed", "trading",
    "baseball", "basketball", "football", "hockey", "soccer", "nfl", "nba",
    "mlb", "nhl", "wnba", "ufc", "update", "series", "the", "of", "and",
    "lot", "foil", "debut", "short", "print", "limited", "team", "sports",
    "memorabilia", "swatch", "game", "used", "player", "players", "worn",
    "ticket", "association", "officially", "product", "inc", "llc", "usa",
    "major", "league", "leagues", "properties", "trademark", "trademarks",
    "registered", "logo", "logos", "copyright", "reserved", "rights", "all",
    "printed", "front", "back", "photo", "bats", "throws", "born", "ht", "wt",
    "no", "nr", "number",
})


def _single_words(phrases: list[str]) -> set[str]:
    # Multi-word phrases are masked as whole spans before name detection, so
    # only single-word terms need to break a name run ("Allen & Ginter" must
    # not swallow "Josh Allen").
    return {p.lower() for p in phrases if " " not in p.strip()}


SET_ALIASES: tuple[str, ...] = tuple(alias for entry in SETS for alias in entry.aliases)
SUBSET_ALIASES: tuple[str, ...] = tuple(alias for entry in SUBSETS for alias in entry.aliases)

VOCABULARY: frozenset[str] = frozenset(
    KEYWORDS
    | _single_words(list(SET_ALIASES))
    | _single_words(list(BRANDS))
    | _single_words(list(SUBSET_ALIASES))
    | _single_words(list(PARALLELS))
    | _single_words(list(COLOR_PREFIXED_PARALLELS))
    | _single_words(list(GRADING_VENDORS))
)

# Colors and team nicknames that are also surnames or given names ("Jalen
# Green", "Derrick White", "Jazz Chisholm"). They may appear inside a player
# name but never make one up on their own.
NAME_SHARED_WORDS: frozenset[str] = frozenset(
    (_single_words(list(COLORS)) | _single_words(list(TEAMS))) - VOCABULARY
)

# A name candidate that begins with one of these is a product line, not a person.
BRAND_PREFIXES: tuple[str, ...] = tuple(
    sorted({p.lower() for p in SET_ALIASES + BRANDS}, key=len, reverse=True)
)


def starts_with_brand(candidate: str) -> bool:
    lowered = candidate.lower()
    return any(lowered == p or lowered.startswith(p + " ") for p in BRAND_PREFIXES)


@lru_cache(maxsize=1024)
def phrase_pattern(phrase: str) -> re.Pattern[str]:
    """Case-insensitive whole-phrase regex tolerant of OCR whitespace."""
    body = r"\s+".join(re.escape(part) for part in phrase.split())
    return re.compile(rf"(?<![A-Za-z0-9]){body}(?![A-Za-z0-9])", re.IGNORECASE)


def longest_first(phrases: list[str]) -> list[str]:
    return sorted(phrases, key=len, reverse=True)
