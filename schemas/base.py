from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, TypeVar

S = TypeVar("S", bound="SchemaBase")


class SchemaBase(BaseModel):
    """
    Base class for all schemas in the article pipeline.
    Enforces strict fields, validates assignments and provides safe serialization.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def validated_copy(self: S, **updates: Any) -> S:
        # model_copy(update=...) skips validation; user-supplied fields must not.
        data = self.model_dump()
        data.update(updates)
        return type(self).model_validate(data)
