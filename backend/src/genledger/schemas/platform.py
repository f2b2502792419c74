"""Pydantic schemas for platform settings."""
from typing import Optional

from pydantic import BaseModel, Field


class PlatformSettings(BaseModel):
    """Switches the operator can flip without a deploy."""

    generation_enabled: bool = Field(default=True, description="Accept new generation jobs")
    maintenance_message: Optional[str] = Field(default=None, description="Shown to users while generation is disabled")
