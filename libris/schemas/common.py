from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class LibrisModel(BaseModel):
    """Accepts and renders camelCase keys, reads ORM objects."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


def dump(schema, obj):
    if isinstance(obj, (list, tuple)):
        return [dump(schema, o) for o in obj]
    return schema.model_validate(obj).model_dump(mode="json", by_alias=True)
