from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


class Credentials(BaseModel):
    admin_username: str = Field(..., min_length=1, description="Initial Homarr administrator")
    admin_password: str = Field(..., min_length=1)


class AnalyticsSettings(BaseModel):
    enable_general: bool = False
    enable_widget_data: bool = False
    enable_integration_data: bool = False
    enable_user_data: bool = False


class CrawlingSettings(BaseModel):
    no_index: bool = True
    no_follow: bool = True
    no_translate: bool = True
    no_sitelinks_search_box: bool = True


class ServerSettings(BaseModel):
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    crawling: CrawlingSettings = Field(default_factory=CrawlingSettings)


class EntryTile(BaseModel):
    """Fixed app tile placed on the home board during setup."""

    enabled: bool = False
    name: str = "Cockpit"
    description: str = ""
    icon_url: str = ""
    href: str = ""
    width: int = Field(1, ge=1, le=24)
    height: int = Field(1, ge=1, le=24)
    x_offset: int = Field(0, ge=0)
    y_offset: int = Field(0, ge=0)


class BoardSettings(BaseModel):
    name: str = Field(..., min_length=1, description="Board name, unique within Homarr")
    column_count: int = Field(10, ge=1, le=24)
    is_public: bool = True
    cockpit: EntryTile = Field(default_factory=EntryTile)


class ThemeSettings(BaseModel):
    default_color_scheme: Literal["light", "dark"] = "dark"


class BrandingConfig(BaseModel):
    credentials: Credentials
    settings: ServerSettings = Field(default_factory=ServerSettings)
    board: BoardSettings
    theme: ThemeSettings = Field(default_factory=ThemeSettings)


def load_branding(path: str | Path) -> BrandingConfig:
    """Read and validate the branding JSON document.

    Raises OSError if the file cannot be read and pydantic.ValidationError
    if its content does not match the schema.
    """
    return BrandingConfig.model_validate_json(Path(path).read_text(encoding="utf-8"))
