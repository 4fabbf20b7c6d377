from datetime import datetime, timezone

from pydantic import Field
from .base import SchemaBase
from .common import ArticleLength, Author, BriefStatus, DetailLevel


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class ResearchBundle(SchemaBase):
    """What deep research contributes to a brief (a partial ContentBrief)."""
    topic: str
    competitor_urls: list[str] = Field(default_factory=list)
    backlink_urls: list[str] = Field(default_factory=list)
    target_keywords: list[str] = Field(default_factory=list)
    secondary_keywords: list[str] = Field(default_factory=list)


class ContentBrief(SchemaBase):
    id: str
    topic: str
    slug: str | None = None
    company_url: str | None = None
    brand_context: str | None = None
    research_source_url: str | None = None
    competitor_urls: list[str] = Field(default_factory=list)
    backlink_urls: list[str] = Field(default_factory=list)
    target_keywords: list[str] = Field(default_factory=list)
    secondary_keywords: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    audience: str = "Professional Audience"
    tone: str = "Professional & Authoritative"
    length: ArticleLength = ArticleLength.medium
    detail_level: DetailLevel = DetailLevel.standard
    status: BriefStatus = BriefStatus.draft
    author: Author = Field(default_factory=Author)
    created_at: str = Field(default_factory=_utc_now_iso)

    def apply_research(self, research: ResearchBundle) -> "ContentBrief":
        # The topic the user typed stays authoritative; research only fills the lists.
        return self.model_copy(
            update={
                "competitor_urls": list(research.competitor_urls),
                "backlink_urls": list(research.backlink_urls),
                "target_keywords": list(research.target_keywords),
                "secondary_keywords": list(research.secondary_keywords),
            }
        )
