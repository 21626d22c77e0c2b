from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RuntimeSettings(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    model: str
    api_endpoint: str
    theme: str = "system"
    system_instructions: str
    max_history: int
    backend_base_url: str


class SettingsUpdate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    model: Optional[str] = None
    api_endpoint: Optional[str] = None
    theme: Optional[str] = None
    system_instructions: Optional[str] = None
    max_history: Optional[Union[int, float, str]] = None
    backend_base_url: Optional[str] = None


class SettingsResponse(BaseModel):
    defaults: RuntimeSettings
    current: RuntimeSettings


class CurrentSettingsResponse(BaseModel):
    current: RuntimeSettings
