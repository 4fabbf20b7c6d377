from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import Field

from .base import SchemaBase
from .brief import ContentBrief
from .common import KeywordSuggestion
from .outline import ContentOutline


class Citation(SchemaBase):
    id: int = Field(..., ge=1, description="Sequential, in first-seen order")
    url: str
    title: str
    snippet: Optional[str] = None


class ArticleImage(SchemaBase):
    id: str
    url: str = Field(..., description="Usually a data: URI")
    prompt: str
    is_hero: bool = False


class SEOAnalysis(SchemaBase):
    """
    SEO score for a body against target keywords.

    This is a cache: always derivable from (body, target_keywords), safe to
    discard and recompute.
    """
    score: int = Field(0, ge=0, le=100)
    readability: str = "N/A"
    keyword_density: Dict[str, float] = Field(default_factory=dict)
    suggestions: list[str] = Field(default_factory=list)
    keyword_suggestions: list[KeywordSuggestion] = Field(default_factory=list)

    @classmethod
    def neutral(cls) -> "SEOAnalysis":
        return cls(score=0, readability="N/A")


class BacklinkAuthority(str, Enum):
    high = "High"
    medium = "Medium"
    emerging = "Emerging"


class BacklinkOpportunity(SchemaBase):
    id: str
    url: str
    title: str
    reason: str = ""
    authority: BacklinkAuthority = BacklinkAuthority.emerging


class IntegrationPlatform(str, Enum):
    wordpress = "WordPress"
    ghost = "Ghost"
    webflow = "Webflow"
    shopify = "Shopify"
    serpstat = "Serpstat Backlinks API"
    custom = "Custom Webhook"


class IntegrationDescriptor(SchemaBase):
    platform: IntegrationPlatform
    base_url: str
    credential: str
    name: Optional[str] = None


class ArticleMetadata(SchemaBase):
    id: str
    title: str
    topic: str
    score: int = 0
    status: Literal["Draft", "Published", "Review"] = "Draft"
    updated_at: Optional[str] = None


class Draft(SchemaBase):
    """
    Persisted aggregate for one article: brief + outline + body + analysis +
    images + citations. `id` equals `brief.id`.

    `updated_at` is for display only; it never takes part in conflict
    resolution or content equality.
    """

    id: str
    brief: ContentBrief
    outline: ContentOutline
    body: str = ""
    analysis: Optional[SEOAnalysis] = None
    images: list[ArticleImage] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)
    backlink_opportunities: list[BacklinkOpportunity] = Field(default_factory=list)
    has_started: bool = False
    updated_at: Optional[str] = None

    @property
    def hero_image(self) -> Optional[ArticleImage]:
        for img in self.images:
            if img.is_hero:
                return img
        return None

    @property
    def hero_image_url(self) -> Optional[str]:
        hero = self.hero_image
        return hero.url if hero else None

    @property
    def title(self) -> str:
        return (self.outline.title or "").strip() or (self.brief.topic or "").strip() or "Untitled"

    def insert_image(self, image: ArticleImage) -> None:
        """Insert an image; a new hero replaces any existing hero."""
        if image.is_hero:
            kept = [img for img in self.images if not img.is_hero]
            self.images = [image] + kept
        else:
            self.images = self.images + [image]

    def content_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"updated_at"})

    def content_equals(self, other: "Draft") -> bool:
        return self.content_dict() == other.content_dict()

    def to_metadata(self) -> ArticleMetadata:
        return ArticleMetadata(
            id=self.id,
            title=self.title,
            topic=(self.brief.topic or "").strip() or "N/A",
            score=self.analysis.score if self.analysis else 0,
            status="Draft",
            updated_at=self.updated_at,
        )
