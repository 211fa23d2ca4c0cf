"""Tests for local/cloud stores and debounced persistence."""

import asyncio
import json

import aiosqlite
import httpx
import pytest

from perplexsearch.chat.state import AppState
from perplexsearch.errors import ConfigurationError
from perplexsearch.models.conversation import Conversation, Folder
from perplexsearch.models.message import Message
from perplexsearch.models.settings import AppSettings
from perplexsearch.models.user_data import UserData
from perplexsearch.storage.cloud_store import CloudStore
from perplexsearch.storage.local_store import LocalStore
from perplexsearch.storage.sync import DebouncedWriter, PersistenceManager
from perplexsearch.utils.encryption import decrypt_api_key, encrypt_api_key, mask_api_key


def _user_data(title: str = "Local chat", api_key: str = "pplx-local") -> UserData:
    return UserData(
        conversations=[Conversation(
            id="c1",
            title=title,
            created_at=1,
            updated_at=2,
            messages=[
                Message(role="user", content="hi", timestamp=1),
                Message(role="assistant", content="hello", timestamp=2,
                        citations=["https://a.example"], suggestions=["More?"]),
            ],
        )],
        folders=[Folder(id="f1", name="Work", created_at=1)],
        settings=AppSettings(model="sonar", api_key=api_key, openai_api_key="sk-local"),
    )


# ============================================================
# Encryption
# ============================================================

def test_encryption_round_trip():
    token = encrypt_api_key("pplx-secret", secret="s1")

    assert token != "pplx-secret"
    assert decrypt_api_key(token, secret="s1") == "pplx-secret"
    with pytest.raises(ValueError):
        decrypt_api_key(token, secret="other")


def test_mask_api_key():
    assert mask_api_key("sk-abcdef123456") == "sk-...3456"
    assert mask_api_key("pplx-abcdef9876") == "pplx-...9876"
    assert mask_api_key("abc") == "***"
    assert mask_api_key("") == ""


# ============================================================
# Local store
# ============================================================

@pytest.mark.asyncio
async def test_local_store_round_trip(tmp_path):
    store = LocalStore(str(tmp_path / "data" / "user.db"), encryption_secret="secret")
    try:
        assert await store.get("local") is None

        data = _user_data()
        await store.put("local", data)
        loaded = await store.get("local")
    finally:
        await store.close()

    assert loaded == data


@pytest.mark.asyncio
async def test_local_store_encrypts_credentials_at_rest(tmp_path):
    db_path = str(tmp_path / "user.db")
    store = LocalStore(db_path, encryption_secret="secret")
    await store.put("local", _user_data(api_key="pplx-very-secret"))
    await store.close()

    async with aiosqlite.connect(db_path) as conn:
        async with conn.execute("SELECT data FROM user_data WHERE user_id = 'local'") as cursor:
            row = await cursor.fetchone()

    assert "pplx-very-secret" not in row[0]
    stored_settings = json.loads(row[0])["settings"]
    assert stored_settings["system_instruction"] == ""


@pytest.mark.asyncio
async def test_wrong_secret_drops_credentials_not_data(tmp_path):
    db_path = str(tmp_path / "user.db")
    writer = LocalStore(db_path, encryption_secret="one")
    await writer.put("local", _user_data())
    await writer.close()

    reader = LocalStore(db_path, encryption_secret="two")
    loaded = await reader.get("local")
    await reader.close()

    assert loaded.settings.api_key == ""
    assert loaded.conversations[0].title == "Local chat"


@pytest.mark.asyncio
async def test_unknown_stored_model_fails_at_load(tmp_path):
    db_path = str(tmp_path / "user.db")
    async with aiosqlite.connect(db_path) as conn:
        await conn.execute(
            "CREATE TABLE user_data (user_id TEXT PRIMARY KEY, data TEXT NOT NULL, updated_at TEXT)"
        )
        await conn.execute(
            "INSERT INTO user_data (user_id, data) VALUES (?, ?)",
            ("local", json.dumps({"settings": {"model": "retired-model"}})),
        )
        await conn.commit()

    store = LocalStore(db_path, encryption_secret="secret")
    with pytest.raises(ConfigurationError):
        await store.get("local")
    await store.close()


# ============================================================
# Cloud store
# ============================================================

@pytest.mark.asyncio
async def test_cloud_store_rest_shape():
    stored = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/users/u1.json"
        assert request.url.params["auth"] == "tok"
        if request.method == "PUT":
            stored["doc"] = json.loads(request.content)
            return httpx.Response(200, json=stored["doc"])
        return httpx.Response(200, content=json.dumps(stored.get("doc")))

    store = CloudStore("https://proj.firebaseio.com/", auth_token="tok",
                       encryption_secret="secret", transport=httpx.MockTransport(handler))

    assert await store.get("u1") is None
    await store.put("u1", _user_data())
    assert "pplx-local" not in json.dumps(stored["doc"])
    assert await store.get("u1") == _user_data()


# ============================================================
# Merge and load
# ============================================================

def test_merge_cloud_wins_except_local_credentials():
    local = _user_data(title="Local chat", api_key="pplx-local")
    cloud = _user_data(title="Cloud chat", api_key="pplx-cloud")
    cloud.settings = AppSettings(
        model="gpt-4o", api_key="pplx-cloud", google_api_key="AIza-cloud", openai_api_key=""
    )

    merged = PersistenceManager.merge(local, cloud)

    assert merged.conversations[0].title == "Cloud chat"
    assert merged.settings.model == "gpt-4o"
    assert merged.settings.api_key == "pplx-local"
    assert merged.settings.openai_api_key == "sk-local"
    assert merged.settings.google_api_key == "AIza-cloud"


def test_merge_keeps_local_conversations_when_cloud_has_none():
    local = _user_data()
    cloud = UserData(settings=AppSettings(theme="dark"))

    merged = PersistenceManager.merge(local, cloud)

    assert merged.conversations == local.conversations
    assert merged.folders == local.folders
    assert merged.settings.theme == "dark"


@pytest.mark.asyncio
async def test_load_survives_cloud_failure(tmp_path):
    local = LocalStore(str(tmp_path / "user.db"), encryption_secret="secret")
    await local.put("local", _user_data())
    cloud = CloudStore(
        "https://proj.firebaseio.com",
        transport=httpx.MockTransport(lambda r: httpx.Response(503)),
    )
    manager = PersistenceManager(local, cloud)

    data = await manager.load()
    await manager.close()

    assert data.conversations[0].title == "Local chat"


# ============================================================
# Debounced writes
# ============================================================

@pytest.mark.asyncio
async def test_burst_of_changes_produces_one_write():
    writes = []

    async def write(data):
        writes.append(data)

    writer = DebouncedWriter("Test", 0.05, lambda: UserData(), write)
    for _ in range(10):
        writer.schedule()
        await asyncio.sleep(0.005)

    assert writes == []
    await asyncio.sleep(0.15)
    assert len(writes) == 1
    assert not writer.pending


@pytest.mark.asyncio
async def test_failed_write_is_logged_not_raised(caplog):
    async def write(data):
        raise httpx.ConnectError("offline")

    writer = DebouncedWriter("Cloud", 0.0, lambda: UserData(), write)
    writer.schedule()
    await writer.flush()
    await asyncio.sleep(0.01)

    assert writer.failures == 1
    assert "Cloud save failed" in caplog.text


@pytest.mark.asyncio
async def test_flush_writes_pending_state_immediately(tmp_path):
    local = LocalStore(str(tmp_path / "user.db"), encryption_secret="secret")
    manager = PersistenceManager(local, local_delay=60.0)
    state = AppState(_user_data())
    manager.attach(state)

    state.rename_conversation("c1", "Renamed")
    await manager.flush()

    stored = await local.get("local")
    await manager.close()
    assert stored.conversations[0].title == "Renamed"
