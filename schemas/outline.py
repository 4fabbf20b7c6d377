from pydantic import Field
from .base import SchemaBase


class OutlineSection(SchemaBase):
    heading: str
    subheadings: list[str] = Field(default_factory=list)
    key_points: list[str] = Field(default_factory=list)


class ContentOutline(SchemaBase):
    """
    Section skeleton for an article.

    Section order is meaningful: sections are rendered and generated in order,
    so nothing downstream may sort or dedupe them.
    """
    title: str
    sections: list[OutlineSection] = Field(default_factory=list)

    def to_prompt_lines(self) -> list[str]:
        lines: list[str] = []
        for i, sec in enumerate(self.sections, start=1):
            lines.append(f"{i}. {sec.heading}")
            for sub in sec.subheadings:
                lines.append(f"   - {sub}")
            for kp in sec.key_points:
                lines.append(f"   * {kp}")
        return lines
