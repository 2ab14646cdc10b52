from __future__ import annotations

from typing import Optional

import pytest
from fastapi.testclient import TestClient

from bucketgate.common.settings import GatewaySettings
from bucketgate.gateway.app import create_app
from bucketgate.gateway.cache import CacheError
from bucketgate.gateway.storage import ObjectInfo, ObjectNotFound, StorageError


class FakeStorage:
    def __init__(self, objects: Optional[dict[str, int]] = None) -> None:
        self.objects = dict(objects or {})
        self.stat_calls: list[str] = []
        self.signed: list[tuple[str, int]] = []
        self.error: Optional[StorageError] = None

    async def stat(self, key: str) -> ObjectInfo:
        self.stat_calls.append(key)
        if self.error is not None:
            raise self.error
        if key not in self.objects:
            raise ObjectNotFound(key)
        return ObjectInfo(key=key, size=self.objects[key])

    def make_signed_url(self, key: str, deadline: int) -> str:
        self.signed.append((key, deadline))
        return f"/{key}?e={deadline}&token=signed"


class FakeCache:
    def __init__(self) -> None:
        self.entries: dict[str, str] = {}
        self.get_calls: list[str] = []
        self.set_calls: list[tuple[str, str]] = []
        self.get_error: Optional[CacheError] = None
        self.set_error: Optional[CacheError] = None

    async def get(self, key: str) -> Optional[str]:
        self.get_calls.append(key)
        if self.get_error is not None:
            raise self.get_error
        return self.entries.get(key)

    async def set(self, key: str, value: str) -> None:
        self.set_calls.append((key, value))
        if self.set_error is not None:
            raise self.set_error
        self.entries[key] = value


class RecordingLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict]] = []

    def _record(self, level: str, event: str, kwargs: dict) -> None:
        self.records.append((level, event, kwargs))

    def info(self, event, **kwargs) -> None:  # noqa: ANN001
        self._record("info", event, kwargs)

    def warning(self, event, **kwargs) -> None:  # noqa: ANN001
        self._record("warning", event, kwargs)

    def error(self, event, **kwargs) -> None:  # noqa: ANN001
        self._record("error", event, kwargs)

    def exception(self, event, **kwargs) -> None:  # noqa: ANN001
        self._record("exception", event, kwargs)

    def events(self, level: Optional[str] = None) -> list[str]:
        return [event for lvl, event, _ in self.records if level is None or lvl == level]


def make_settings(**overrides) -> GatewaySettings:
    values = {
        "s3_bucket": "media",
        "content_domain": "cdn.example.com",
        "status_log_threshold": 1000,
    }
    values.update(overrides)
    return GatewaySettings(**values)


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def settings() -> GatewaySettings:
    return make_settings()


@pytest.fixture
def app(settings: GatewaySettings, storage: FakeStorage, cache: FakeCache):
    return create_app(settings, storage=storage, cache=cache)


@pytest.fixture
def access_log(app) -> RecordingLogger:
    recorder = RecordingLogger()
    app.state.gateway.access_logger = recorder
    return recorder


@pytest.fixture
def gateway_log(app) -> RecordingLogger:
    recorder = RecordingLogger()
    app.state.gateway.logger = recorder
    return recorder


@pytest.fixture
def client(app):
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client
