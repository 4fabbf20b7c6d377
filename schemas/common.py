from enum import Enum
from pydantic import Field
from .base import SchemaBase

class ArticleLength(str, Enum):
    short = "short"
    medium = "medium"
    long = "long"

class DetailLevel(str, Enum):
    summary = "summary"
    standard = "standard"
    detailed = "detailed"

class BriefStatus(str, Enum):
    draft = "draft"
    brief_ready = "brief_ready"
    outline_ready = "outline_ready"
    content_ready = "content_ready"

class Author(SchemaBase):
    name: str = "Content Expert"
    title: str = "Senior Strategist"
    bio: str = "Professional writer with expertise in industry analysis and digital growth."
    photo_url: str | None = None

class KeywordSuggestion(SchemaBase):
    keyword: str
    action: str = ""
    explanation: str = ""
