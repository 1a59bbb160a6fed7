import pytest

from app.core.storage import LocalStorage, S3Storage, get_storage


@pytest.mark.asyncio
async def test_local_write_and_read(storage):
    path = await storage.write("2026-03-14/s1/c1_summary.json", b'{"ok": true}')

    assert path.endswith("c1_summary.json")
    assert await storage.read("2026-03-14/s1/c1_summary.json") == b'{"ok": true}'
    assert await storage.read("2026-03-14/s1/missing.json") is None


@pytest.mark.asyncio
async def test_local_write_leaves_no_temp_files(storage):
    await storage.write("a/b_conversation.json", b"{}")
    await storage.write("a/b_conversation.json", b'{"v": 2}')

    assert [p.name for p in storage.base_path.rglob("*") if p.is_file()] == ["b_conversation.json"]
    assert await storage.read("a/b_conversation.json") == b'{"v": 2}'


@pytest.mark.asyncio
async def test_local_list_keys_filters_by_suffix(storage):
    assert await storage.list_keys() == []

    await storage.write("d/s1/c1_summary.json", b"{}")
    await storage.write("d/s1/c1_conversation.json", b"{}")
    await storage.write("d/s2/c2_summary.json", b"{}")
    (storage.base_path / "d" / "s2" / "c3_summary.json.tmp").write_bytes(b"partial")

    assert await storage.list_keys("_summary.json") == ["d/s1/c1_summary.json", "d/s2/c2_summary.json"]
    assert len(await storage.list_keys()) == 3


def test_storage_follows_flag(monkeypatch):
    from app.core.flags import get_flags

    assert isinstance(get_storage(), LocalStorage)

    monkeypatch.setenv("FF_USE_S3", "true")
    get_flags.cache_clear()
    backend = get_storage()

    assert isinstance(backend, S3Storage)
    assert backend._full_key("d/s1/c1_summary.json").endswith("d/s1/c1_summary.json")
