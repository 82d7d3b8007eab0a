"""GitHub Gist used as a free JSON blob host.

The whole dashboard snapshot lives in a single file of a private gist.
Calls are blocking ``requests`` calls; callers on the event loop run them
in an executor.
"""

import logging
from typing import Any, Dict, Optional, Protocol

import requests

from .backup import envelope_to_json, process_backup
from .errors import RemoteError
from .models import BackupEnvelope

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.github.com"
GIST_FILENAME = "nebula_nav_data.json"
GIST_DESCRIPTION = "Nebula Nav Data Storage"


class BlobService(Protocol):
    def validate_token(self, token: str) -> bool: ...

    def create(self, token: str, envelope: BackupEnvelope) -> str: ...

    def update(self, token: str, blob_id: str, envelope: BackupEnvelope) -> None: ...

    def get(self, token: str, blob_id: str) -> Optional[BackupEnvelope]: ...


class GistClient:
    def __init__(
        self,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(
        self,
        method: str,
        path: str,
        token: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        try:
            return self.session.request(
                method,
                f"{self.api_base}{path}",
                headers={
                    "Authorization": f"token {token}",
                    "Accept": "application/vnd.github+json",
                },
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise RemoteError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _files(envelope: BackupEnvelope) -> Dict[str, Any]:
        return {GIST_FILENAME: {"content": envelope_to_json(envelope)}}

    def validate_token(self, token: str) -> bool:
        try:
            resp = self._request("GET", "/user", token)
        except RemoteError as exc:
            logger.warning("token check failed: %s", exc)
            return False
        return resp.ok

    def create(self, token: str, envelope: BackupEnvelope) -> str:
        resp = self._request(
            "POST",
            "/gists",
            token,
            {
                "description": GIST_DESCRIPTION,
                "public": False,
                "files": self._files(envelope),
            },
        )
        if not resp.ok:
            raise RemoteError(f"Failed to create gist (HTTP {resp.status_code})")
        try:
            data = resp.json()
        except ValueError as exc:
            raise RemoteError("Gist API returned invalid JSON") from exc
        gist_id = data.get("id") if isinstance(data, dict) else None
        if not gist_id:
            raise RemoteError("Gist API response has no id")
        logger.info("created gist %s", gist_id)
        return gist_id

    def update(self, token: str, blob_id: str, envelope: BackupEnvelope) -> None:
        resp = self._request("PATCH", f"/gists/{blob_id}", token, {"files": self._files(envelope)})
        if not resp.ok:
            raise RemoteError(f"Failed to update gist {blob_id} (HTTP {resp.status_code})")

    def get(self, token: str, blob_id: str) -> Optional[BackupEnvelope]:
        resp = self._request("GET", f"/gists/{blob_id}", token)
        if not resp.ok:
            logger.warning("gist %s not readable (HTTP %s)", blob_id, resp.status_code)
            return None
        try:
            data = resp.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        file = (data.get("files") or {}).get(GIST_FILENAME)
        if not file:
            return None
        content = file.get("content")
        # the API cuts file content off around 1MB, the raw URL has all of it
        if file.get("truncated") and file.get("raw_url"):
            content = self._fetch_raw(file["raw_url"], token)
        if not content:
            return None
        return process_backup(content)

    def _fetch_raw(self, url: str, token: str) -> Optional[str]:
        try:
            resp = self.session.get(
                url, headers={"Authorization": f"token {token}"}, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise RemoteError(f"GET {url} failed: {exc}") from exc
        if not resp.ok:
            return None
        return resp.text
