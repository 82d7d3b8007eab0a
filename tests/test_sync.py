"""Tests for the local-first sync protocol between memory, store and gist."""

from __future__ import annotations

import asyncio

import pytest

from nebula_nav.backup import build_envelope
from nebula_nav.errors import SyncError
from nebula_nav.models import Link, SiteConfig
from nebula_nav.state import Dashboard
from nebula_nav.sync import SyncState, Synchronizer


def _link(n: int, category: str = "Dev") -> Link:
    return Link(id=str(n), title=f"Link {n}", url=f"https://{n}.example", category=category, created_at=n)


def _remote_envelope(count: int = 5, password: str | None = "secret1"):
    links = [_link(n, "Remote") for n in range(100, 100 + count)]
    return build_envelope(links, SiteConfig(title="Remote Nav", logo_url="r.png"), password, now=1)


class TestSilentPull:
    @pytest.mark.asyncio
    async def test_remote_snapshot_overwrites_local_state(self, store, blob, sync_enabled) -> None:
        store.save_links([_link(1), _link(2)])
        store.set_password("local-pw")
        blob.envelope = _remote_envelope()
        dashboard = Dashboard(store, Synchronizer(store, blob))
        assert len(dashboard.links) == 2

        task = dashboard.start()
        assert task is not None
        await dashboard.sync.drain()

        assert [l.id for l in dashboard.links] == [str(n) for n in range(100, 105)]
        assert [l.id for l in store.get_links()] == [str(n) for n in range(100, 105)]
        assert dashboard.site_config.title == "Remote Nav"
        assert store.get_site_config().logo_url == "r.png"
        assert dashboard.gate.check("secret1") is True
        assert dashboard.gate.check("local-pw") is False
        assert dashboard.sync.state is SyncState.IDLE
        assert blob.calls_named("get") == [("get", "tok", "gist-1")]

    @pytest.mark.asyncio
    async def test_snapshot_without_password_keeps_local_password(self, store, blob, sync_enabled) -> None:
        store.set_password("local-pw")
        blob.envelope = _remote_envelope(password=None)
        dashboard = Dashboard(store, Synchronizer(store, blob))

        dashboard.start()
        await dashboard.sync.drain()

        assert dashboard.gate.check("local-pw") is True

    @pytest.mark.asyncio
    async def test_no_pull_without_sync_config(self, dashboard, blob) -> None:
        assert dashboard.start() is None
        await dashboard.sync.drain()

        assert blob.calls == []
        assert dashboard.sync.state is SyncState.LOCAL_ONLY

    @pytest.mark.asyncio
    async def test_no_pull_when_sync_disabled(self, store, blob, sync_enabled) -> None:
        sync_enabled.enabled = False
        store.save_sync_config(sync_enabled)
        dashboard = Dashboard(store, Synchronizer(store, blob))

        assert dashboard.start() is None
        assert blob.calls == []

    @pytest.mark.asyncio
    async def test_failure_keeps_local_data(self, store, blob, sync_enabled) -> None:
        store.save_links([_link(1), _link(2)])
        blob.fail = True
        dashboard = Dashboard(store, Synchronizer(store, blob))

        dashboard.start()
        await dashboard.sync.drain()

        assert [l.id for l in dashboard.links] == ["1", "2"]
        assert [l.id for l in store.get_links()] == ["1", "2"]
        assert dashboard.sync.state is SyncState.ERROR
        assert "get failed" in dashboard.sync.last_error

    @pytest.mark.asyncio
    async def test_missing_remote_snapshot_keeps_local_data(self, store, blob, sync_enabled) -> None:
        store.save_links([_link(1)])
        blob.envelope = None
        dashboard = Dashboard(store, Synchronizer(store, blob))

        dashboard.start()
        await dashboard.sync.drain()

        assert [l.id for l in dashboard.links] == ["1"]
        assert dashboard.sync.state is SyncState.ERROR

    @pytest.mark.asyncio
    async def test_pull_finishing_after_local_edit_is_discarded(self, store, blob, sync_enabled) -> None:
        store.save_links([_link(1)])
        blob.envelope = _remote_envelope()
        blob.release.clear()
        dashboard = Dashboard(store, Synchronizer(store, blob))

        dashboard.start()
        await asyncio.sleep(0)
        added = dashboard.add_link("Fresh", "https://fresh.example")
        blob.release.set()
        await dashboard.sync.drain()

        assert [l.id for l in dashboard.links] == ["1", added.id]
        assert [l.id for l in store.get_links()] == ["1", added.id]
        assert len(blob.calls_named("update")) == 1


class TestPushOnMutation:
    @pytest.mark.asyncio
    async def test_no_remote_call_when_sync_disabled(self, dashboard, blob) -> None:
        dashboard.add_link("Docs", "docs.python.org")
        dashboard.save_site_config(SiteConfig(title="New"))
        await dashboard.sync.drain()

        assert blob.calls == []

    @pytest.mark.asyncio
    async def test_one_update_with_post_mutation_snapshot(self, dashboard, blob, store, sync_enabled) -> None:
        store.set_password("pw")

        link = dashboard.add_link("Docs", "https://docs.python.org", "Dev")
        await dashboard.sync.drain()

        updates = blob.calls_named("update")
        assert len(updates) == 1
        _, token, blob_id, snapshot = updates[0]
        assert (token, blob_id) == ("tok", "gist-1")
        assert [l.id for l in snapshot.links] == [l.id for l in dashboard.links]
        assert snapshot.links[-1].id == link.id
        assert snapshot.auth_check == "pw"
        assert dashboard.sync.state is SyncState.IDLE

    @pytest.mark.asyncio
    async def test_every_mutation_kind_pushes(self, dashboard, blob, store, sync_enabled) -> None:
        store.set_password("pw")
        link = dashboard.add_link("Docs", "https://docs.python.org")
        dashboard.edit_link(link.id, title="Python docs")
        dashboard.delete_link("1")
        dashboard.save_site_config(SiteConfig(title="Mine"))
        dashboard.gate.change_password("pw", "pw2")
        await dashboard.sync.drain()

        updates = blob.calls_named("update")
        assert len(updates) == 5
        # pushes run in executor threads, so arrival order is not guaranteed
        last = next(u[3] for u in updates if u[3].auth_check == "pw2")
        assert last.site_config.title == "Mine"
        assert last.auth_check == "pw2"
        assert "1" not in [l.id for l in last.links]

    @pytest.mark.asyncio
    async def test_push_failure_is_logged_not_raised(self, dashboard, blob, store, sync_enabled) -> None:
        blob.fail = True

        dashboard.add_link("Docs", "https://docs.python.org")
        await dashboard.sync.drain()

        assert len(store.get_links()) == 5
        assert dashboard.sync.state is SyncState.ERROR
        assert len(blob.calls_named("update")) == 1

    @pytest.mark.asyncio
    async def test_successful_push_records_last_sync(self, store, blob, sync_enabled) -> None:
        dashboard = Dashboard(store, Synchronizer(store, blob, clock=lambda: 4242))

        dashboard.delete_link("1")
        await dashboard.sync.drain()

        assert store.get_sync_config().last_sync == 4242

    def test_push_runs_inline_without_event_loop(self, dashboard, blob, sync_enabled) -> None:
        dashboard.add_link("Docs", "https://docs.python.org")

        assert len(blob.calls_named("update")) == 1


class TestEnableSync:
    @pytest.mark.asyncio
    async def test_creates_gist_from_local_snapshot(self, dashboard, blob, store) -> None:
        store.set_password("pw")

        config = await dashboard.enable_sync(" tok ")

        assert config.blob_id == "gist-new"
        assert [c[0] for c in blob.calls] == ["validate", "create"]
        seeded = blob.calls_named("create")[0][2]
        assert [l.id for l in seeded.links] == ["1", "2", "3", "4"]
        assert seeded.auth_check == "pw"
        saved = store.get_sync_config()
        assert saved.is_active is True
        assert (saved.token, saved.blob_id) == ("tok", "gist-new")
        assert saved.last_sync > 0
        assert dashboard.sync.state is SyncState.IDLE

    @pytest.mark.asyncio
    async def test_existing_gist_is_overwritten_by_local_data(self, dashboard, blob, store) -> None:
        config = await dashboard.enable_sync("tok", "existing")

        assert config.blob_id == "existing"
        assert [c[0] for c in blob.calls] == ["validate", "update"]
        assert blob.calls_named("update")[0][2] == "existing"
        assert store.get_sync_config().blob_id == "existing"

    @pytest.mark.asyncio
    async def test_invalid_token_saves_nothing(self, dashboard, blob, store) -> None:
        blob.valid = False

        with pytest.raises(SyncError, match="Invalid GitHub token"):
            await dashboard.enable_sync("bad")

        assert store.get_sync_config() is None
        assert blob.calls_named("create") == []
        assert dashboard.sync.state is SyncState.ERROR

    @pytest.mark.asyncio
    async def test_remote_failure_saves_nothing(self, dashboard, blob, store) -> None:
        blob.fail = True

        with pytest.raises(SyncError):
            await dashboard.enable_sync("tok")

        assert store.get_sync_config() is None

    @pytest.mark.asyncio
    async def test_blank_token_is_rejected_without_remote_calls(self, dashboard, blob) -> None:
        with pytest.raises(SyncError):
            await dashboard.enable_sync("   ")

        assert blob.calls == []


class TestRestore:
    @pytest.mark.asyncio
    async def test_requires_confirmation(self, dashboard, blob, sync_enabled) -> None:
        with pytest.raises(SyncError, match="confirmed"):
            await dashboard.restore_from_cloud()

        assert blob.calls == []

    @pytest.mark.asyncio
    async def test_overwrites_local_state(self, dashboard, blob, store, sync_enabled) -> None:
        blob.envelope = _remote_envelope(3)

        envelope = await dashboard.restore_from_cloud(confirm=True)

        assert len(envelope.links) == 3
        assert [l.id for l in dashboard.links] == ["100", "101", "102"]
        assert len(store.get_links()) == 3
        assert dashboard.gate.check("secret1") is True

    @pytest.mark.asyncio
    async def test_failure_leaves_local_state_untouched(self, dashboard, blob, store, sync_enabled) -> None:
        blob.fail = True

        with pytest.raises(SyncError):
            await dashboard.restore_from_cloud(confirm=True)

        assert [l.id for l in dashboard.links] == ["1", "2", "3", "4"]
        assert store.get_password() is None

    @pytest.mark.asyncio
    async def test_empty_gist_leaves_local_state_untouched(self, dashboard, blob, sync_enabled) -> None:
        blob.envelope = None

        with pytest.raises(SyncError, match="No usable backup"):
            await dashboard.restore_from_cloud(confirm=True)

        assert len(dashboard.links) == 4

    @pytest.mark.asyncio
    async def test_requires_sync_configuration(self, dashboard, blob) -> None:
        with pytest.raises(SyncError, match="not configured"):
            await dashboard.restore_from_cloud(confirm=True)


class TestDisableAndStatus:
    def test_disable_returns_to_local_only(self, dashboard, store, sync_enabled) -> None:
        assert dashboard.sync.state is SyncState.IDLE

        dashboard.disable_sync()

        assert store.get_sync_config() is None
        assert dashboard.sync.state is SyncState.LOCAL_ONLY

    def test_status_never_reveals_token(self, dashboard, sync_enabled) -> None:
        status = dashboard.sync.status()

        assert status == {
            "state": "idle",
            "enabled": True,
            "gistId": "gist-1",
            "lastSync": 1,
            "lastError": None,
        }
        assert "tok" not in str(status)
