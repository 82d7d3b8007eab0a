from __future__ import annotations

import threading

import pytest

from nebula_nav.errors import RemoteError
from nebula_nav.models import SyncConfig
from nebula_nav.state import Dashboard
from nebula_nav.storage import LocalStore, MemoryKeyValueBackend
from nebula_nav.sync import Synchronizer


class FakeBlobService:
    """In-memory stand-in for the gist client that records every call."""

    def __init__(self, envelope=None, valid=True, fail=False, created_id="gist-new"):
        self.envelope = envelope
        self.valid = valid
        self.fail = fail
        self.created_id = created_id
        self.calls: list[tuple] = []
        # cleared to hold ``get`` until the test releases it
        self.release = threading.Event()
        self.release.set()

    def validate_token(self, token):
        self.calls.append(("validate", token))
        return self.valid

    def create(self, token, envelope):
        self.calls.append(("create", token, envelope))
        if self.fail:
            raise RemoteError("create failed")
        return self.created_id

    def update(self, token, blob_id, envelope):
        self.calls.append(("update", token, blob_id, envelope))
        if self.fail:
            raise RemoteError("update failed")

    def get(self, token, blob_id):
        self.calls.append(("get", token, blob_id))
        self.release.wait(timeout=5)
        if self.fail:
            raise RemoteError("get failed")
        return self.envelope

    def calls_named(self, name):
        return [c for c in self.calls if c[0] == name]


@pytest.fixture
def store() -> LocalStore:
    return LocalStore(MemoryKeyValueBackend())


@pytest.fixture
def blob() -> FakeBlobService:
    return FakeBlobService()


@pytest.fixture
def dashboard(store: LocalStore, blob: FakeBlobService) -> Dashboard:
    return Dashboard(store, Synchronizer(store, blob))


@pytest.fixture
def sync_enabled(store: LocalStore) -> SyncConfig:
    config = SyncConfig(enabled=True, token="tok", blob_id="gist-1", last_sync=1)
    store.save_sync_config(config)
    return config
