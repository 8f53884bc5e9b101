"""Shared model config and base types."""
from pydantic import BaseModel, ConfigDict


class LMBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class RecordModel(LMBaseModel):
    """Records fetched from collaborators may carry fields we do not use."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)
