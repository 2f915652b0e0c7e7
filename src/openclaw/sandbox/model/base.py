from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Base(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_document(self) -> dict:
        """Serialize to the camelCase JSON document shape, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)
