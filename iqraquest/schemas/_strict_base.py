from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Opt-in strict base: forbid extras, validate defaults and assignments."""

    model_config = ConfigDict(
        extra="forbid",
        validate_default=True,
        validate_assignment=True,
    )
