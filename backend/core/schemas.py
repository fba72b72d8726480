"""
schemas.py — Ranking source payload models.

Entities are frozen: a fetch replaces the whole list, nothing edits an entry in
place. Field aliases follow the ranking source's camelCase wire names.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from core.grading import get_grade_label
from core.records import numeric_or_none


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class SubjectScore(_Frozen):
    name: str = ""
    score: float = 0.0
    test_count: int = Field(default=0, alias="testCount")

    @field_validator("score", mode="before")
    @classmethod
    def _score_or_zero(cls, v):
        return numeric_or_none(v) or 0.0

    @field_validator("test_count", mode="before")
    @classmethod
    def _count_or_zero(cls, v):
        n = numeric_or_none(v)
        return int(n) if n is not None else 0


class RankedEntity(_Frozen):
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    name: str
    rank: int = 0
    score: float = 0.0
    grade: str = ""
    subjects: List[SubjectScore] = Field(default_factory=list)
    photo: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    total_tests: int = Field(default=0, alias="totalTests")
    percentile: float = 0.0
    out_of_range: bool = Field(default=False, alias="outOfRange")

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, v):
        return str(v) if v is not None else v

    @field_validator("score", "percentile", mode="before")
    @classmethod
    def _number_or_zero(cls, v):
        return numeric_or_none(v) or 0.0

    @field_validator("total_tests", "rank", mode="before")
    @classmethod
    def _int_or_zero(cls, v):
        n = numeric_or_none(v)
        return int(n) if n is not None else 0

    @field_validator("subjects", mode="before")
    @classmethod
    def _subjects_or_empty(cls, v):
        return v if isinstance(v, list) else []

    @field_validator("out_of_range", mode="before")
    @classmethod
    def _flag(cls, v):
        return bool(v)

    @model_validator(mode="before")
    @classmethod
    def _fill_grade(cls, values):
        if isinstance(values, dict) and not values.get("grade"):
            values = dict(values)
            values["grade"] = get_grade_label(numeric_or_none(values.get("score")) or 0.0)
        return values


class PageInfo(_Frozen):
    total: int
    page: int = 1
    total_pages: int = Field(default=0, alias="totalPages")
    has_more: bool = Field(default=False, alias="hasMore")

    @field_validator("total", mode="before")
    @classmethod
    def _total_is_number(cls, v):
        if numeric_or_none(v) is None:
            raise ValueError("pagination.total must be a number")
        return int(v)


DEFAULT_PAGE_INFO = PageInfo(total=0, page=1, total_pages=0, has_more=False)


class LeaderboardResponse(_Frozen):
    data: List[RankedEntity]
    pagination: PageInfo
    subjects: List[str] = Field(default_factory=list)

    @field_validator("subjects", mode="before")
    @classmethod
    def _subjects_or_empty(cls, v):
        return [str(s) for s in v] if isinstance(v, list) else []
