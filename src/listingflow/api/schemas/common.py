"""Shared schema building blocks."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request body with camelCase keys on the wire.

    Unknown keys are ignored; required-field checks with domain messages
    happen in the services.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )
