"""Versioned JSON envelope used for file backups and gist sync payloads.

An envelope looks like::

    {"version": 1, "date": <epoch-ms>, "links": [...],
     "siteConfig": {"title": ..., "logoUrl": ...}, "authCheck": "<password>"}

``authCheck`` carries the admin password in plain text so that restoring a
backup on another device also restores login access.

Decoding normalizes two things, so a re-encoded envelope can differ from
the text it was read from:

- numeric link ids are read as strings (``5`` is written back as ``"5"``)
- ``null`` values are dropped on encode, the same as an unset field

Unknown fields are kept as received.
"""

import json
import logging
from datetime import datetime
from typing import List, Optional, Union

from pydantic import ValidationError

from .models import BACKUP_VERSION, BackupEnvelope, Link, SiteConfig, now_ms

logger = logging.getLogger(__name__)


def build_envelope(
    links: List[Link],
    site_config: SiteConfig,
    auth_check: Optional[str] = None,
    *,
    now: Optional[int] = None,
) -> BackupEnvelope:
    return BackupEnvelope(
        version=BACKUP_VERSION,
        date=now if now is not None else now_ms(),
        links=[link.model_copy() for link in links],
        site_config=site_config.model_copy(),
        auth_check=auth_check or None,
    )


def envelope_to_dict(envelope: BackupEnvelope) -> dict:
    return envelope.model_dump(mode="json", by_alias=True, exclude_none=True)


def envelope_to_json(envelope: BackupEnvelope) -> str:
    return json.dumps(envelope_to_dict(envelope), indent=2, ensure_ascii=False)


def create_backup(
    links: List[Link],
    site_config: SiteConfig,
    auth_check: Optional[str] = None,
    *,
    now: Optional[int] = None,
) -> str:
    """Serialize a snapshot into envelope JSON.

    Callers pass the current admin password as ``auth_check``; it is
    embedded verbatim.
    """
    return envelope_to_json(build_envelope(links, site_config, auth_check, now=now))


def process_backup(text: Union[str, bytes, None]) -> Optional[BackupEnvelope]:
    """Parse envelope JSON, returning None when it is not a usable backup."""
    if not text:
        return None
    try:
        return BackupEnvelope.model_validate_json(text)
    except ValidationError as exc:
        logger.warning("rejected backup: %d validation error(s)", exc.error_count())
        return None


def backup_filename(now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%d")
    return f"nebula-nav-backup-{stamp}.json"
