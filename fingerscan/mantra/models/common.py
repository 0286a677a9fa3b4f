from pydantic import BaseModel as PydanticBaseModel
from pydantic import ConfigDict


class BaseModel(PydanticBaseModel):
    """Base model with common configuration for all models"""

    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
    )


class FrozenModel(PydanticBaseModel):
    """Immutable model for configuration records and requests"""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        populate_by_name=True,
    )
