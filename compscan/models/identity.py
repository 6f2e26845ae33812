"""
CompScan - Card Identity & Query Models

CardIdentity is the structured description of a card derived from free text.
Every field is optional: an identity with nothing populated is the
"no signal" result and is never an error.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

RAW_GRADE = "Raw"
FALLBACK_QUERY = "trading card"


class CardType(str, Enum):
    """Card construction / finish classification."""
    BASE = "Base"
    AUTO = "Auto"
    PATCH = "Patch"
    RPA = "RPA"            # rookie patch autograph
    REFRACTOR = "Refractor"
    HOLO = "Holo"
    OTHER = "Other"


class CardIdentity(BaseModel):
    """Best-effort structured identity of a single trading card."""

    model_config = {"populate_by_name": True}

    year: int | None = Field(default=None, ge=1800, le=2035)
    player: str | None = None
    team: str | None = None
    set_name: str | None = Field(default=None, alias="set")
    subset: str | None = None
    company: str | None = None
    card_number: str | None = None
    parallel: str | None = None
    color: str | None = None
    is_rookie: bool = False
    card_type: CardType | None = None
    grade: str = RAW_GRADE
    canonical_name: str | None = None
    confidence: int = Field(default=0, ge=0, le=100)

    @field_validator(
        "player", "team", "set_name", "subset", "company", "parallel", "color",
        "canonical_name",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = " ".join(v.split())
            return v or None
        return v

    @field_validator("grade", mode="before")
    @classmethod
    def default_grade(cls, v: Any) -> str:
        """Absent or blank grade normalizes to "Raw"."""
        if v is None:
            return RAW_GRADE
        text = " ".join(str(v).split())
        if not text or text.lower() == "raw":
            return RAW_GRADE
        return text

    @field_validator("card_number", mode="before")
    @classmethod
    def normalize_card_number(cls, v: Any) -> str | None:
        """Uppercase, no leading '#', inner whitespace joined with '-'."""
        if v is None:
            return None
        text = str(v).strip().lstrip("#").strip()
        if text.lower().startswith("no."):
            text = text[3:].strip()
        text = "-".join(text.split()).upper()
        return text or None

    @field_validator("is_rookie", mode="before")
    @classmethod
    def null_rookie(cls, v: Any) -> bool:
        return bool(v) if v is not None else False

    @field_validator("card_type", mode="before")
    @classmethod
    def parse_card_type(cls, v: Any) -> CardType | None:
        if v is None or isinstance(v, CardType):
            return v
        text = str(v).strip()
        if not text:
            return None
        for member in CardType:
            if member.value.lower() == text.lower():
                return member
        return CardType.OTHER

    @classmethod
    def empty(cls) -> "CardIdentity":
        """The no-signal identity: nothing populated, grade Raw, confidence 0."""
        return cls()

    @property
    def is_raw(self) -> bool:
        return self.grade == RAW_GRADE

    @property
    def is_empty(self) -> bool:
        return not any((
            self.year, self.player, self.team, self.set_name, self.subset,
            self.company, self.card_number, self.parallel, self.color,
            self.is_rookie, self.card_type, not self.is_raw,
        ))


class QuerySet(BaseModel):
    """Primary marketplace query plus ordered, progressively broader fallbacks."""

    primary: str = FALLBACK_QUERY
    alternatives: list[str] = Field(default_factory=list)

    @property
    def all_queries(self) -> list[str]:
        return [self.primary, *self.alternatives]
