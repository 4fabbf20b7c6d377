from pydantic import Field
from schemas.base import SchemaBase


class TitleSuggestionInput(SchemaBase):
    """
    Input for TitleSuggestionAgent.

    Notes:
    - existing_titles penalizes similarity so drafts in the registry don't
      end up with near-identical headlines.
    - banned_starts prevents monoculture like "Ultimate Guide to ...".
    """
    topic: str = Field(..., description="High-level topic for the article")
    primary_keyword: str = Field(..., description="Primary SEO keyword")
    secondary_keywords: list[str] = Field(default_factory=list, description="Secondary/related keywords")

    existing_titles: list[str] = Field(default_factory=list, description="Titles already used by other drafts")

    num_candidates: int = Field(30, ge=5, le=100, description="Candidate pool size before scoring")
    return_top_n: int = Field(5, ge=1, le=10, description="How many titles to return")

    banned_starts: list[str] = Field(
        default_factory=lambda: ["The Ultimate Guide", "Ultimate Guide", "Everything You Need"],
        description="Title prefixes that are overused or undesirable",
    )


class TitleCandidate(SchemaBase):
    title: str = Field(..., description="The proposed title")
    source: str = Field(..., description="'model' or the archetype that produced this title")
    score: float = Field(..., ge=0, le=100, description="Overall score (0-100)")
    reasons: list[str] = Field(default_factory=list, description="Short reasons explaining the score")


class TitleSuggestionOutput(SchemaBase):
    selected: list[TitleCandidate] = Field(..., description="Top-N titles selected")
    candidates: list[TitleCandidate] = Field(..., description="All candidates (scored)")
