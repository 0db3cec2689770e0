from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from publisher.app.dependencies import reset_cached_dependencies
from publisher.app.main import create_app


@pytest.fixture(autouse=True)
def _publisher_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:  # pyright: ignore[reportUnusedFunction]
    monkeypatch.setenv("MDX_PUBLISHER_ICON_PROBE_ENABLED", "0")
    monkeypatch.setenv("MDX_PUBLISHER_TELEMETRY_SINK", "none")
    monkeypatch.delenv("MDX_PUBLISHER_BLOB_STORE_BACKEND", raising=False)


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("MDX_PUBLISHER_DATA_DIR", str(data_dir))
    monkeypatch.setenv("MDX_PUBLISHER_BLOB_STORE_BACKEND", "filesystem")
    monkeypatch.setenv("MDX_PUBLISHER_PUBLIC_BASE_URL", "https://assets.example.com/")
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
