from __future__ import annotations

import json

from copilot.core.storage import MemoryResumptionStore, ResumptionStore


def test_handle_survives_a_new_store_instance(tmp_path) -> None:
    path = str(tmp_path / "state" / "state.json")
    ResumptionStore(path=path).save("abc123")

    assert ResumptionStore(path=path).load() == "abc123"


def test_newer_handle_overwrites(tmp_path) -> None:
    store = ResumptionStore(path=str(tmp_path / "state.json"))
    store.save("h-1")
    store.save("h-2")
    assert store.load() == "h-2"


def test_clear_removes_only_own_key(tmp_path) -> None:
    path = str(tmp_path / "state.json")
    transcription = ResumptionStore(path=path, key="handle.transcription")
    reply = ResumptionStore(path=path, key="handle.reply")
    transcription.save("t")
    reply.save("r")

    transcription.clear()

    assert transcription.load() is None
    assert reply.load() == "r"
    with open(path, encoding="utf-8") as f:
        assert json.load(f) == {"handle.reply": "r"}


def test_missing_or_corrupt_file_reads_as_empty(tmp_path) -> None:
    path = tmp_path / "state.json"
    assert ResumptionStore(path=str(path)).load() is None

    path.write_text("{not json", encoding="utf-8")
    assert ResumptionStore(path=str(path)).load() is None


def test_empty_handle_is_not_saved(tmp_path) -> None:
    store = ResumptionStore(path=str(tmp_path / "state.json"))
    store.save("")
    assert store.load() is None
    assert not (tmp_path / "state.json").exists()


def test_memory_store() -> None:
    store = MemoryResumptionStore("seed")
    assert store.load() == "seed"
    store.clear()
    assert store.load() is None
