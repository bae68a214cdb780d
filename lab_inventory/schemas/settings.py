from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class SettingEntryDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    key: str
    value: str
    description: Optional[str] = None


class UpdateSettingsDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    settings: List[SettingEntryDto] = []
