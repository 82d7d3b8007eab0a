import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from pydantic import TypeAdapter, ValidationError

from .models import Link, SiteConfig, SyncConfig, default_links

logger = logging.getLogger(__name__)

LINKS_KEY = "nebula_links"
CONFIG_KEY = "nebula_config"
AUTH_KEY = "nebula_auth"
SYNC_KEY = "nebula_sync"

_links_adapter = TypeAdapter(List[Link])


class KeyValueBackend(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class FileKeyValueBackend:
    """One ``<key>.json`` file per key inside a data directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(value, encoding="utf-8")

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class MemoryKeyValueBackend:
    def __init__(self, items: Optional[Dict[str, str]] = None):
        self.items: Dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class LocalStore:
    """Typed access to the four persisted records.

    Reads never raise: a missing, unreadable or corrupt record yields the
    record's default. The records are written independently of each other.
    """

    def __init__(self, backend: KeyValueBackend):
        self.backend = backend

    def _read(self, key: str) -> Any:
        try:
            raw = self.backend.get_item(key)
        except (OSError, UnicodeDecodeError):
            logger.warning("failed to read %s", key, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("ignoring corrupt record %s", key)
            return None

    def _write(self, key: str, value: Any) -> None:
        try:
            self.backend.set_item(key, json.dumps(value, indent=2, ensure_ascii=False))
        except OSError:
            logger.warning("failed to save %s", key, exc_info=True)

    # links

    def get_links(self) -> List[Link]:
        data = self._read(LINKS_KEY)
        if data is None:
            return default_links()
        try:
            return _links_adapter.validate_python(data)
        except ValidationError:
            logger.warning("stored links are invalid, using defaults")
            return default_links()

    def save_links(self, links: List[Link]) -> None:
        self._write(
            LINKS_KEY,
            [link.model_dump(mode="json", by_alias=True, exclude_none=True) for link in links],
        )

    # site config

    def get_site_config(self) -> SiteConfig:
        data = self._read(CONFIG_KEY)
        if data is None:
            return SiteConfig()
        try:
            return SiteConfig.model_validate(data)
        except ValidationError:
            logger.warning("stored site config is invalid, using defaults")
            return SiteConfig()

    def save_site_config(self, config: SiteConfig) -> None:
        self._write(CONFIG_KEY, config.model_dump(mode="json", by_alias=True))

    # password

    def get_password(self) -> Optional[str]:
        value = self._read(AUTH_KEY)
        return value if isinstance(value, str) else None

    def set_password(self, password: str) -> None:
        self._write(AUTH_KEY, password)

    def check_password(self, candidate: str) -> bool:
        stored = self.get_password()
        return stored is not None and stored == candidate

    def has_password_set(self) -> bool:
        return bool(self.get_password())

    # sync config

    def get_sync_config(self) -> Optional[SyncConfig]:
        data = self._read(SYNC_KEY)
        if data is None:
            return None
        try:
            return SyncConfig.model_validate(data)
        except ValidationError:
            logger.warning("stored sync config is invalid, treating sync as disabled")
            return None

    def save_sync_config(self, config: SyncConfig) -> None:
        self._write(SYNC_KEY, config.model_dump(mode="json", by_alias=True))

    def clear_sync_config(self) -> None:
        try:
            self.backend.remove_item(SYNC_KEY)
        except OSError:
            logger.warning("failed to clear %s", SYNC_KEY, exc_info=True)
