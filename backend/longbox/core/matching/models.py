"""Pydantic models for external metadata and cross-source matches."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

YearMatch = Literal["exact", "close", "none"]
SourceStatus = Literal["matched", "no_match", "error", "skipped"]


class SeriesMetadata(BaseModel):
    """A series as described by one metadata source."""

    source: str = Field(..., description="Source name (e.g., 'comicvine', 'metron')")
    source_id: str = Field(..., description="Identifier of the series within the source")
    name: str = Field(..., description="Series name as published by the source")
    publisher: str | None = Field(default=None, description="Publisher name")
    start_year: int | None = Field(default=None, description="Year the series started")
    issue_count: int | None = Field(default=None, description="Number of issues in the series")
    creators: list[str] = Field(default_factory=list, description="Creator names")
    aliases: list[str] = Field(default_factory=list, description="Alternative series names")
    extra: dict[str, Any] = Field(default_factory=dict, description="Source-specific fields")


class IssueMetadata(BaseModel):
    """An issue as described by one metadata source."""

    source: str
    source_id: str
    number: str | None = Field(default=None, description="Raw issue number text")
    title: str | None = None
    cover_date: str | None = Field(default=None, description="YYYY-MM, YYYY-MM-DD or 'Month YYYY'")
    series_id: str | None = None


class CrossMatchFactors(BaseModel):
    """Per-factor breakdown behind a cross-source confidence score."""

    title_similarity: float = 0.0
    publisher_match: bool = False
    year_match: YearMatch = "none"
    issue_count_match: bool = False
    creator_overlap: list[str] = Field(default_factory=list)
    alias_match: bool = False


class CrossSourceMatch(BaseModel):
    """Best candidate found in a secondary source for a primary series."""

    source: str
    source_id: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    match_factors: CrossMatchFactors
    is_auto_match_candidate: bool = False
    series_data: SeriesMetadata


class CrossSourceResult(BaseModel):
    """Outcome of matching one series against every secondary source."""

    primary_source: str
    primary_source_id: str
    matches: list[CrossSourceMatch] = Field(default_factory=list)
    status: dict[str, SourceStatus] = Field(default_factory=dict)


class IssueMatchFactors(BaseModel):
    number_match: bool = False
    cover_date_match: YearMatch = "none"
    title_similarity: float = 0.0


class IssueCrossMatch(BaseModel):
    """Candidate issue that matched a primary issue."""

    source: str
    issue: IssueMetadata
    confidence: float = Field(..., ge=0.0, le=1.0)
    match_factors: IssueMatchFactors


class CrossSourceMapping(BaseModel):
    """A stored link between the same series in two sources."""

    primary_source: str
    primary_source_id: str
    matched_source: str
    matched_source_id: str
    confidence: float = 0.0
    match_method: Literal["auto", "user"] = "auto"
    verified: bool = False
    match_factors: dict[str, Any] = Field(default_factory=dict)
