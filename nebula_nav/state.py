import logging
from datetime import datetime
from typing import List, Optional, Tuple

from .auth import CredentialGate
from .backup import backup_filename, build_envelope, create_backup, process_backup
from .errors import InvalidBackup, LinkNotFound
from .gist import GistClient
from .models import BackupEnvelope, Link, SiteConfig, SyncConfig, now_ms
from .settings import Settings
from .storage import FileKeyValueBackend, LocalStore
from .sync import Synchronizer
from .urls import normalize_link_url

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "General"
ALL_CATEGORIES = "All"
EDITABLE_FIELDS = {"title", "url", "category", "description", "icon"}
REQUIRED_FIELDS = ("title", "url")


class Dashboard:
    """In-memory links and site config, the state every view renders from.

    Local data is loaded synchronously on construction. Each mutation writes
    through to the local store and then hands the post-mutation snapshot to
    the synchronizer.
    """

    def __init__(self, store: LocalStore, synchronizer: Synchronizer):
        self.store = store
        self.sync = synchronizer
        self.links: List[Link] = store.get_links()
        self.site_config: SiteConfig = store.get_site_config()
        self.gate = CredentialGate(store, on_change=self._changed)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Dashboard":
        store = LocalStore(FileKeyValueBackend(settings.data_dir))
        client = GistClient(settings.gist_api, timeout=settings.http_timeout)
        return cls(store, Synchronizer(store, client))

    def start(self):
        return self.sync.start_silent_pull(self._apply_envelope)

    def snapshot(self) -> BackupEnvelope:
        return build_envelope(self.links, self.site_config, self.store.get_password())

    def _apply_envelope(self, envelope: BackupEnvelope) -> None:
        self.links = [link.model_copy() for link in envelope.links]
        self.site_config = envelope.site_config.model_copy()

    def _changed(self) -> None:
        self.sync.notify_mutation(self.snapshot())

    def _commit_links(self, links: List[Link]) -> None:
        self.links = links
        self.store.save_links(links)
        self._changed()

    # links

    def find_link(self, link_id: str) -> Link:
        link = next((l for l in self.links if l.id == link_id), None)
        if link is None:
            raise LinkNotFound(link_id)
        return link

    def _new_link_id(self) -> str:
        taken = {l.id for l in self.links}
        candidate = now_ms()
        while str(candidate) in taken:
            candidate += 1
        return str(candidate)

    def add_link(
        self,
        title: str,
        url: str,
        category: str = DEFAULT_CATEGORY,
        description: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Link:
        if not title or not url:
            raise ValueError("title and url are required")
        link = Link(
            id=self._new_link_id(),
            title=title,
            url=normalize_link_url(url),
            category=category or DEFAULT_CATEGORY,
            description=description,
            icon=icon,
            created_at=now_ms(),
        )
        self._commit_links([*self.links, link])
        return link

    def edit_link(self, link_id: str, **changes) -> Link:
        current = self.find_link(link_id)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot edit {', '.join(sorted(unknown))}")
        for field in REQUIRED_FIELDS:
            if field in changes and not changes[field]:
                raise ValueError("title and url are required")
        if "url" in changes:
            changes["url"] = normalize_link_url(changes["url"])
        if "category" in changes and not changes["category"]:
            changes["category"] = DEFAULT_CATEGORY
        # validated, so a bad edit never reaches the store
        updated = Link.model_validate({**current.model_dump(by_alias=True), **changes})
        self._commit_links([updated if l.id == link_id else l for l in self.links])
        return updated

    def delete_link(self, link_id: str) -> None:
        self.find_link(link_id)
        self._commit_links([l for l in self.links if l.id != link_id])

    # site config

    def save_site_config(self, config: SiteConfig) -> SiteConfig:
        self.site_config = config.model_copy()
        self.store.save_site_config(self.site_config)
        self._changed()
        return self.site_config

    # browsing

    def categories(self) -> List[str]:
        return [ALL_CATEGORIES, *sorted({l.category for l in self.links})]

    def filter_links(self, search: str = "", category: str = ALL_CATEGORIES) -> List[Link]:
        query = search.lower()
        res = []
        for l in self.links:
            if category and category != ALL_CATEGORIES and l.category != category:
                continue
            text = [l.title, l.url, l.description or ""]
            if any(query in part.lower() for part in text):
                res.append(l)
        return res

    # file backups

    def export_backup(self, now: Optional[datetime] = None) -> Tuple[str, str]:
        """Return ``(filename, json)`` for a downloadable backup."""
        content = create_backup(self.links, self.site_config, self.store.get_password())
        return backup_filename(now), content

    def import_backup(self, text) -> BackupEnvelope:
        envelope = process_backup(text)
        if envelope is None:
            raise InvalidBackup("Invalid backup file")
        self._apply_envelope(envelope)
        self.store.save_links(self.links)
        self.store.save_site_config(self.site_config)
        if envelope.auth_check:
            self.store.set_password(envelope.auth_check)
        self._changed()
        logger.info("imported %d links from backup", len(envelope.links))
        return envelope

    # cloud sync

    async def enable_sync(self, token: str, gist_id: Optional[str] = None) -> SyncConfig:
        return await self.sync.enable(token, gist_id, self.snapshot())

    async def restore_from_cloud(self, confirm: bool = False) -> BackupEnvelope:
        return await self.sync.restore(self._apply_envelope, confirm=confirm)

    def disable_sync(self) -> None:
        self.sync.disable()
