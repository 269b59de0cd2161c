import json

import pytest

from serenity.core.errors import PersistenceError, ValidationError
from serenity.core.kvstore import JsonFileKeyValueStore, MemoryKeyValueStore
from serenity.models.models import OverrideAction
from serenity.services.overrides import STORAGE_KEY, OverrideStore


async def test_set_and_get_normalize_identifiers(overrides):
    record = await overrides.set("@SomeChannel", "block", handle="SomeChannel")

    assert record.identifier == "somechannel"
    assert record.handle == "SomeChannel"
    assert await overrides.get("somechannel") == OverrideAction.BLOCK
    assert await overrides.get("/@SOMECHANNEL/") == OverrideAction.BLOCK
    assert await overrides.get("other") is None
    assert await overrides.get("") is None


async def test_last_write_wins(overrides):
    first = await overrides.set("somechannel", OverrideAction.BLOCK)
    second = await overrides.set("@somechannel", OverrideAction.ALLOW)

    assert await overrides.get("somechannel") == OverrideAction.ALLOW
    assert second.timestamp > first.timestamp
    assert len(await overrides.list()) == 1


async def test_set_rejects_bad_input(overrides):
    with pytest.raises(ValidationError):
        await overrides.set("  ", "block")
    with pytest.raises(ValidationError):
        await overrides.set("somechannel", "hide")
    assert await overrides.list() == []


async def test_remove(overrides):
    await overrides.set("somechannel", "block")

    assert await overrides.remove("@somechannel") is True
    assert await overrides.remove("somechannel") is False
    assert await overrides.get("somechannel") is None


async def test_lists_keep_insertion_order(overrides):
    await overrides.set("a", "block")
    await overrides.set("b", "allow")
    await overrides.set("c", "block")

    assert [o.identifier for o in await overrides.list()] == ["a", "b", "c"]
    assert [o.identifier for o in await overrides.list_blocked()] == ["a", "c"]
    assert [o.identifier for o in await overrides.list_allowed()] == ["b"]


async def test_listeners_are_notified(overrides):
    seen = []
    overrides.add_listener(seen.append)

    await overrides.set("@A", "block")
    await overrides.remove("a")
    await overrides.remove("missing")
    await overrides.clear_all()

    assert seen == ["a", "a", None]


async def test_failing_listener_does_not_break_writes(overrides):
    def broken(key):
        raise RuntimeError("boom")

    overrides.add_listener(broken)
    await overrides.set("somechannel", "allow")
    assert await overrides.get("somechannel") == OverrideAction.ALLOW


async def test_malformed_entries_are_skipped():
    backend = MemoryKeyValueStore()
    backend.set(STORAGE_KEY, {
        "good": {"identifier": "good", "action": "block", "timestamp": 1},
        "bad": {"identifier": "bad", "action": "hide", "timestamp": 2},
        "worse": "not-a-record",
    })
    overrides = OverrideStore(backend)

    assert [o.identifier for o in await overrides.list()] == ["good"]


async def test_index_reloads_when_persisted_layer_changes(tmp_path):
    path = tmp_path / "overrides.json"
    writer = OverrideStore(JsonFileKeyValueStore(path))
    reader = OverrideStore(JsonFileKeyValueStore(path))

    assert await reader.get("somechannel") is None
    await writer.set("somechannel", "block")
    assert await reader.get("somechannel") == OverrideAction.BLOCK

    document = json.loads(path.read_text())
    assert document[STORAGE_KEY]["somechannel"]["action"] == "block"


async def test_json_store_tolerates_corrupt_document(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text("{not json")
    overrides = OverrideStore(JsonFileKeyValueStore(path))

    assert await overrides.list() == []
    await overrides.set("somechannel", "allow")
    assert await overrides.get("somechannel") == OverrideAction.ALLOW


async def test_json_store_write_failure_raises(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    overrides = OverrideStore(JsonFileKeyValueStore(blocker / "overrides.json"))

    with pytest.raises(PersistenceError):
        await overrides.set("somechannel", "block")


def test_json_store_failed_write_leaves_no_temp_file(tmp_path):
    store = JsonFileKeyValueStore(tmp_path / "overrides.json")

    with pytest.raises(PersistenceError):
        store.set(STORAGE_KEY, {"bad": object()})

    assert list(tmp_path.iterdir()) == []
