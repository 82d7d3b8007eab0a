import time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

BACKUP_VERSION = 1


def now_ms() -> int:
    return int(time.time() * 1000)


class Link(BaseModel):
    # unknown fields are kept so they survive a backup round trip
    model_config = ConfigDict(populate_by_name=True, extra="allow", coerce_numbers_to_str=True)

    id: str
    title: str
    url: str
    category: str = "General"
    description: Optional[str] = None
    icon: Optional[str] = None  # image URL or emoji
    created_at: int = Field(default_factory=now_ms, alias="createdAt")


class SiteConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    title: str = "Nebula Nav"
    logo_url: str = Field("", alias="logoUrl")


class SyncConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    token: str = Field("", alias="githubToken")
    blob_id: str = Field("", alias="gistId")
    last_sync: int = Field(0, alias="lastSync")

    @property
    def is_active(self) -> bool:
        return bool(self.enabled and self.token and self.blob_id)


class BackupEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: int
    date: Optional[int] = None
    links: List[Link]
    site_config: SiteConfig = Field(alias="siteConfig")
    # plaintext admin password, restores login access on another device
    auth_check: Optional[str] = Field(None, alias="authCheck")

    @field_validator("version")
    @classmethod
    def _known_version(cls, value: int) -> int:
        if value != BACKUP_VERSION:
            raise ValueError(f"unsupported backup version {value}")
        return value

    @model_validator(mode="after")
    def _unique_link_ids(self) -> "BackupEnvelope":
        seen = set()
        for link in self.links:
            if link.id in seen:
                raise ValueError(f"duplicate link id {link.id!r}")
            seen.add(link.id)
        return self


def default_links() -> List[Link]:
    created = now_ms()
    return [
        Link(
            id="1",
            title="Google",
            url="https://google.com",
            category="Search",
            description="The world's most popular search engine.",
            created_at=created,
        ),
        Link(
            id="2",
            title="GitHub",
            url="https://github.com",
            category="Dev",
            description="Where the world builds software.",
            created_at=created,
        ),
        Link(
            id="3",
            title="YouTube",
            url="https://youtube.com",
            category="Media",
            description="Broadcast yourself.",
            created_at=created,
        ),
        Link(
            id="4",
            title="ChatGPT",
            url="https://chat.openai.com",
            category="AI",
            description="AI conversation partner.",
            created_at=created,
        ),
    ]
