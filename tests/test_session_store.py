"""Tests for session storage and session types."""

from __future__ import annotations

import asyncio
import json

import pytest
from conftest import ALICE, SERVICE, make_session

from atproto_session_sync.exceptions import StoreIOError
from atproto_session_sync.session import store as store_module
from atproto_session_sync.session.store import FileSessionStore, InMemorySessionStore
from atproto_session_sync.session.types import FailureClass, Session


class TestSession:
    """Session value semantics."""

    def test_account_id_is_did(self):
        assert make_session().account_id == ALICE

    def test_with_tokens_returns_new_instance(self):
        original = make_session(1)
        updated = original.with_tokens("access-v2", "refresh-v2")

        assert original.access_token == "access-v1"
        assert updated.access_token == "access-v2"
        assert updated.service_endpoint == original.service_endpoint

    def test_from_server_response(self):
        session = Session.from_server_response(
            {"did": ALICE, "handle": "alice.test", "accessJwt": "a", "refreshJwt": "r"},
            SERVICE,
        )

        assert session.access_token == "a"
        assert session.refresh_token == "r"
        assert session.service_endpoint == SERVICE
        assert session.email is None

    def test_from_server_response_missing_field(self):
        with pytest.raises(KeyError):
            Session.from_server_response({"did": ALICE, "handle": "alice.test"}, SERVICE)

    def test_dict_round_trip(self):
        session = make_session(3)
        assert Session.from_dict(session.to_dict()) == session

    def test_repr_hides_tokens(self):
        text = repr(make_session(1))

        assert "access-v1" not in text
        assert "refresh-v1" not in text
        assert ALICE in text

    def test_failure_class_expiry_flag(self):
        assert FailureClass.EXPIRED_CREDENTIAL.is_credential_expiry
        assert FailureClass.AMBIGUOUS_POSSIBLY_EXPIRED.is_credential_expiry
        assert not FailureClass.PERMISSION_DENIED.is_credential_expiry
        assert not FailureClass.NETWORK.is_credential_expiry


class TestInMemorySessionStore:
    """Dict-backed store."""

    async def test_get_missing(self):
        assert await InMemorySessionStore().get(ALICE) is None

    async def test_put_replaces(self):
        store = InMemorySessionStore()
        await store.put(ALICE, make_session(1))
        await store.put(ALICE, make_session(2))

        assert (await store.get(ALICE)).access_token == "access-v2"

    async def test_clear_is_idempotent(self):
        store = InMemorySessionStore()
        await store.put(ALICE, make_session(1))

        await store.clear(ALICE)
        await store.clear(ALICE)

        assert await store.get(ALICE) is None


class TestFileSessionStore:
    """One JSON file per account."""

    async def test_persists_across_instances(self, tmp_path):
        await FileSessionStore(tmp_path).put(ALICE, make_session(2))

        reloaded = await FileSessionStore(tmp_path).get(ALICE)

        assert reloaded == make_session(2)

    async def test_file_name_is_sanitized(self, tmp_path):
        await FileSessionStore(tmp_path).put(ALICE, make_session(1))

        path = tmp_path / "did_plc_alice.json"
        assert path.exists()
        assert json.loads(path.read_text())["refresh_token"] == "refresh-v1"

    async def test_no_temp_files_left(self, tmp_path):
        store = FileSessionStore(tmp_path)
        await store.put(ALICE, make_session(1))
        await store.put(ALICE, make_session(2))

        assert [p.name for p in tmp_path.iterdir()] == ["did_plc_alice.json"]

    async def test_clear_removes_file(self, tmp_path):
        store = FileSessionStore(tmp_path)
        await store.put(ALICE, make_session(1))

        await store.clear(ALICE)

        assert await store.get(ALICE) is None
        assert not (tmp_path / "did_plc_alice.json").exists()
        await store.clear(ALICE)

    async def test_missing_directory_is_empty(self, tmp_path):
        assert await FileSessionStore(tmp_path / "nope").get(ALICE) is None

    async def test_malformed_session_ignored(self, tmp_path):
        (tmp_path / "did_plc_alice.json").write_text(json.dumps({"did": ALICE}))

        assert await FileSessionStore(tmp_path).get(ALICE) is None

    async def test_corrupt_json_raises(self, tmp_path):
        (tmp_path / "did_plc_alice.json").write_text("{not json")

        with pytest.raises(StoreIOError) as exc_info:
            await FileSessionStore(tmp_path).get(ALICE)

        assert exc_info.value.operation == "parse_json"

    async def test_put_during_cold_read_wins(self, tmp_path, monkeypatch):
        """A write landing while a cold read is on disk is not undone by that read."""
        await FileSessionStore(tmp_path).put(ALICE, make_session(1))
        store = FileSessionStore(tmp_path)

        release = asyncio.Event()
        real_load = store_module.load_document

        async def slow_load(path):
            data = await real_load(path)
            await release.wait()
            return data

        monkeypatch.setattr(store_module, "load_document", slow_load)

        reader = asyncio.create_task(store.get(ALICE))
        await asyncio.sleep(0.01)
        writer = asyncio.create_task(store.put(ALICE, make_session(2)))
        await asyncio.sleep(0.01)
        release.set()
        await asyncio.gather(reader, writer)

        assert (await store.get(ALICE)).access_token == "access-v2"
        assert (await FileSessionStore(tmp_path).get(ALICE)).access_token == "access-v2"

    async def test_clear_during_cold_read_wins(self, tmp_path, monkeypatch):
        await FileSessionStore(tmp_path).put(ALICE, make_session(1))
        store = FileSessionStore(tmp_path)

        release = asyncio.Event()
        real_load = store_module.load_document

        async def slow_load(path):
            data = await real_load(path)
            await release.wait()
            return data

        monkeypatch.setattr(store_module, "load_document", slow_load)

        reader = asyncio.create_task(store.get(ALICE))
        await asyncio.sleep(0.01)
        clearing = asyncio.create_task(store.clear(ALICE))
        await asyncio.sleep(0.01)
        release.set()
        await asyncio.gather(reader, clearing)

        assert await store.get(ALICE) is None


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore()
    return FileSessionStore(tmp_path)


class TestReplace:
    """Conditional replace used to commit refreshed sessions."""

    async def test_replaces_matching_session(self, any_store):
        await any_store.put(ALICE, make_session(1))

        result = await any_store.replace(ALICE, make_session(1), make_session(2))

        assert result == make_session(2)
        assert await any_store.get(ALICE) == make_session(2)

    async def test_keeps_newer_session(self, any_store):
        await any_store.put(ALICE, make_session(3))

        result = await any_store.replace(ALICE, make_session(1), make_session(2))

        assert result == make_session(3)
        assert await any_store.get(ALICE) == make_session(3)

    async def test_does_not_recreate_cleared_session(self, any_store):
        await any_store.put(ALICE, make_session(1))
        await any_store.clear(ALICE)

        result = await any_store.replace(ALICE, make_session(1), make_session(2))

        assert result is None
        assert await any_store.get(ALICE) is None
