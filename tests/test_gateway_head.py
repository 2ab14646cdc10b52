from __future__ import annotations

from bucketgate.gateway.cache import CacheError
from bucketgate.gateway.storage import StorageError


def test_head_reports_size_and_records_key(client, storage, cache) -> None:
    storage.objects["videos/intro.mp4"] = 1048576

    resp = client.head("/videos/intro.mp4")

    assert resp.status_code == 200
    assert resp.headers["content-length"] == "1048576"
    assert resp.content == b""
    assert "videos/intro.mp4" in cache.entries


def test_head_always_checks_storage_even_when_cached(client, storage, cache) -> None:
    storage.objects["a.txt"] = 5
    cache.entries["a.txt"] = "2021-01-01T00:00:00"

    resp = client.head("/a.txt")

    assert resp.status_code == 200
    assert storage.stat_calls == ["a.txt"]
    assert cache.get_calls == []
    assert cache.entries["a.txt"] != "2021-01-01T00:00:00"


def test_head_missing_object_leaves_no_entry(client, storage, cache) -> None:
    resp = client.head("/missing.bin")

    assert resp.status_code == 404
    assert resp.content == b""
    assert cache.entries == {}
    assert cache.set_calls == []


def test_head_storage_error_is_not_found(client, storage, cache) -> None:
    storage.error = StorageError("AccessDenied")

    resp = client.head("/private.bin")

    assert resp.status_code == 404
    assert cache.entries == {}


def test_head_cache_write_failure_is_fatal(client, storage, cache, gateway_log) -> None:
    storage.objects["a.txt"] = 5
    cache.set_error = CacheError("Timeout writing to socket")

    resp = client.head("/a.txt")

    assert resp.status_code == 500
    assert resp.headers.get("content-length") in (None, "0")
    errors = [kwargs for level, event, kwargs in gateway_log.records if level == "error"]
    assert errors and errors[0]["error"] == "Timeout writing to socket"


def test_head_root_has_no_object(client, storage) -> None:
    resp = client.head("/")

    assert resp.status_code == 404
    assert storage.stat_calls == [""]
