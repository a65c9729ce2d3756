"""Pydantic schemas for zvelo datasets.

A *dataset* is one facet of the analysis the service performs for a URL or
content body.  The closed set of kinds is described by :class:`DatasetType`;
the values themselves live on :class:`Dataset`, one optional field per kind.

Enumerations travel by name on the JSON wire (``"CATEGORIZATION"``,
``"VERDICT_MALICIOUS"``, ``"BLOG"``) and by number on the gRPC wire.  The
annotated field types below accept either form on input and always emit the
name in JSON mode.

Usage::

    from zapi.schemas.dataset import Dataset, merge_datasets

    merged = merge_datasets(previous, Dataset.model_validate(payload))
"""
from __future__ import annotations

import enum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field, PlainSerializer

from zapi.core.errors import InputError


class Status(BaseModel):
    """An RPC style error status attached to a result or a dataset."""

    code: int = Field(default=0, description="gRPC status code")
    message: str = Field(default="", description="Human readable error message")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class DatasetType(enum.IntEnum):
    """Kinds of dataset that may be requested for a URL or content body."""

    CATEGORIZATION = 0
    MALICIOUS = 4
    ECHO = 5
    LANGUAGE = 6

    @classmethod
    def parse(cls, value: Any) -> DatasetType:
        """Return the member for *value*, a name (any case) or a number.

        Raises:
            InputError: If *value* names no dataset type.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise InputError(f"invalid dataset type: {value}") from None
        name = str(value).strip().upper()
        if name in cls.__members__:
            return cls.__members__[name]
        raise InputError(f"invalid dataset type: {value}")

    @classmethod
    def available(cls) -> list[DatasetType]:
        """Dataset types offered to users; ECHO is a debugging aid."""
        return [t for t in cls if t is not cls.ECHO]


class Verdict(enum.IntEnum):
    """Malicious verdict for a URL or content body."""

    VERDICT_UNKNOWN = 0
    VERDICT_CLEAN = 1
    VERDICT_MALICIOUS = 2

    @classmethod
    def parse(cls, value: Any) -> Verdict:
        if isinstance(value, int):
            return cls(value)
        name = str(value).strip().upper()
        if not name.startswith("VERDICT_"):
            name = "VERDICT_" + name
        try:
            return cls.__members__[name]
        except KeyError:
            raise ValueError(f"invalid verdict: {value}") from None


class Category(enum.IntEnum):
    """zvelo content and malicious categories."""

    UNKNOWN_CATEGORY = 0
    ABORTION = 1
    ADULT_THEMES = 2
    ALCOHOL = 3
    ANONYMIZERS = 4
    ARTS = 5
    AUCTIONS = 6
    BLOG = 7
    BUSINESS = 8
    CHAT = 9
    CRIME = 10
    CULTS = 11
    DATING = 12
    DRUGS = 13
    EDUCATION = 14
    ENTERTAINMENT = 15
    FINANCE = 16
    GAMBLING = 17
    GAMES = 18
    GOVERNMENT = 19
    HACKING = 20
    HEALTH = 21
    HOBBIES = 22
    HOSTING = 23
    JOBS = 24
    KIDS = 25
    LINGERIE = 26
    MESSAGING = 27
    MILITARY = 28
    NEWS = 29
    NUDITY = 30
    PARKED = 31
    PEER_TO_PEER = 32
    PERSONAL_SITES = 33
    POLITICS = 34
    PORNOGRAPHY = 35
    REAL_ESTATE = 36
    REFERENCE = 37
    RELIGION = 38
    SEARCH_ENGINES = 39
    SHOPPING = 40
    SOCIAL_NETWORKING = 41
    SPORTS = 42
    STREAMING_MEDIA = 43
    TECHNOLOGY = 44
    TOBACCO = 45
    TRAVEL = 46
    VIOLENCE = 47
    WEAPONS = 48
    WEB_MAIL = 49
    BOTNETS = 100
    COMPROMISED = 101
    MALICIOUS_SOURCES = 102
    MALWARE = 103
    PHISHING = 104
    SPAM_URLS = 105

    @classmethod
    def parse(cls, value: Any) -> Category:
        """Return the member for *value*.

        *value* may be a numeric id, a category name, or the legacy
        ``<NAME>_4`` spelling; names are matched case-insensitively.

        Raises:
            InputError: If *value* names no category.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise InputError(f"invalid category: {value}") from None

        text = str(value).strip()
        if text.isdigit():
            return cls.parse(int(text))

        name = text.upper().replace("-", "_").replace(" ", "_")
        if name in cls.__members__:
            return cls.__members__[name]
        if name.endswith("_4") and name[:-2] in cls.__members__:
            return cls.__members__[name[:-2]]
        raise InputError(f"invalid category: {value}")

    def __str__(self) -> str:
        return self.name


def _name(value: enum.IntEnum) -> str:
    return value.name


CategoryField = Annotated[
    Category,
    BeforeValidator(Category.parse),
    PlainSerializer(_name, return_type=str, when_used="json"),
]

DatasetTypeField = Annotated[
    DatasetType,
    BeforeValidator(DatasetType.parse),
    PlainSerializer(_name, return_type=str, when_used="json"),
]

VerdictField = Annotated[
    Verdict,
    BeforeValidator(Verdict.parse),
    PlainSerializer(_name, return_type=str, when_used="json"),
]


# ---------------------------------------------------------------------------
# Dataset values
# ---------------------------------------------------------------------------


class Categorization(BaseModel):
    value: list[CategoryField] = Field(default_factory=list)
    error: Status | None = None


class Malicious(BaseModel):
    category: CategoryField = Category.UNKNOWN_CATEGORY
    verdict: VerdictField = Verdict.VERDICT_UNKNOWN
    error: Status | None = None

    def describe(self) -> str:
        """Category name for malicious verdicts, otherwise the verdict name."""
        if self.verdict is Verdict.VERDICT_MALICIOUS:
            return self.category.name
        return self.verdict.name


class Echo(BaseModel):
    url: str = ""
    error: Status | None = None


class Language(BaseModel):
    code: str = ""
    error: Status | None = None


class Dataset(BaseModel):
    """The analysis results for one request, one optional field per kind."""

    categorization: Categorization | None = None
    malicious: Malicious | None = None
    echo: Echo | None = None
    language: Language | None = None

    def field_by_type(self, ds_type: DatasetType) -> BaseModel | None:
        """Return the value stored for *ds_type*, or ``None`` when unset."""
        name = DatasetType(ds_type).name.lower()
        if name not in type(self).model_fields:
            raise ValueError(f"dataset has no field for {ds_type!r}")
        return getattr(self, name)


def merge_datasets(d1: Dataset | None, d2: Dataset | None) -> Dataset:
    """Return a new dataset with every non-null field of *d2* laid over *d1*.

    ``None`` arguments are treated as empty datasets.  Neither argument is
    modified.
    """
    base = d1.model_copy(deep=True) if d1 is not None else Dataset()
    if d2 is None:
        return base

    updates = {
        name: getattr(d2, name).model_copy(deep=True)
        for name in type(d2).model_fields
        if getattr(d2, name) is not None
    }
    return base.model_copy(update=updates)
