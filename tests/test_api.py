"""Tests for the HTTP surface."""

from __future__ import annotations

import gzip
import hashlib
from pathlib import Path
from typing import List

import httpx
import pytest
from fastapi.testclient import TestClient

from rpmproxy.core.config import Settings
from rpmproxy.core.dependencies import build_context
from rpmproxy.data.version_ledger import VersionLedger
from rpmproxy.domain.errors import FetchFailed, NotFound, StorageUnavailable
from rpmproxy.domain.models import LatestRelease
from rpmproxy.main import create_app, error_status
from rpmproxy.providers import ProviderRegistry
from rpmproxy.storage.kv_store import InMemoryKeyValueStore

RPM_URL = "https://downloads.example.com/cursor-1.7.28.el8.x86_64.rpm"
FILENAME = "cursor-1.7.28-abc1234567.el8.x86_64.rpm"


@pytest.fixture
def release() -> LatestRelease:
    return LatestRelease(version="1.7.28", release="abc1234567", download_url=RPM_URL, filename=FILENAME)


@pytest.fixture
def provider(provider_factory, release):
    return provider_factory([release])


@pytest.fixture
def make_client(tmp_path: Path, store: InMemoryKeyValueStore, provider):
    def _make(transport: httpx.AsyncBaseTransport) -> TestClient:
        settings = Settings(
            data_dir=tmp_path,
            base_url="https://rpm.example.com",
            providers=[],
            check_interval_seconds=0,
        )
        context = build_context(
            settings,
            store=store,
            registry=ProviderRegistry([provider]),
            transport=transport,
        )
        return TestClient(create_app(context=context))

    return _make


@pytest.fixture
def client(make_client, rpm_bytes: bytes, origin) -> TestClient:
    return make_client(origin({RPM_URL: rpm_bytes}))


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_index_lists_repositories(client: TestClient) -> None:
    response = client.get("/")
    assert response.status_code == 200
    assert "Static Test Repository:" in response.text
    assert "sudo curl -o /etc/yum.repos.d/static.repo https://rpm.example.com/static/static.repo" in response.text


def test_provider_page(client: TestClient) -> None:
    response = client.get("/static")
    assert response.status_code == 200
    assert "No versions available yet" in response.text

    client.post("/static/__trigger-scheduled")
    response = client.get("/static/")
    assert "  - 1.7.28-abc1234567" in response.text


def test_unknown_provider(client: TestClient) -> None:
    response = client.get("/nope/repodata/repomd.xml")
    assert response.status_code == 404
    assert client.get("/nope").status_code == 404


def test_repo_file(client: TestClient) -> None:
    response = client.get("/static/static.repo")
    assert response.status_code == 200
    assert response.text.splitlines() == [
        "[static]",
        "name=Static Test Repository",
        "baseurl=https://rpm.example.com/static",
        "enabled=1",
        "gpgcheck=0",
        "repo_gpgcheck=0",
        "type=rpm",
    ]


def test_repodata_unavailable_before_discovery(client: TestClient) -> None:
    response = client.get("/static/repodata/repomd.xml")
    assert response.status_code == 503


def test_unknown_repodata_document_before_discovery(client: TestClient) -> None:
    assert client.get("/static/repodata/comps.xml").status_code == 404


async def test_repodata_unavailable_before_extraction(client: TestClient, store, release) -> None:
    await VersionLedger(store).record_if_new("static", release)

    response = client.get("/static/repodata/repomd.xml")
    assert response.status_code == 503
    assert "not yet extracted" in response.text


def test_trigger_then_repodata(client: TestClient, provider, rpm_bytes: bytes) -> None:
    response = client.post("/static/__trigger-scheduled")
    assert response.status_code == 200
    assert response.text == "Scheduled task triggered for provider: static"
    assert provider.calls == 1

    repomd = client.get("/static/repodata/repomd.xml")
    assert repomd.status_code == 200
    assert repomd.headers["content-type"].startswith("application/xml")
    assert "max-age=300" in repomd.headers["cache-control"]
    assert b"<revision>1759287435</revision>" in repomd.content

    primary = client.get("/static/repodata/primary.xml.gz")
    assert primary.status_code == 200
    xml = gzip.decompress(primary.content)
    assert hashlib.sha256(rpm_bytes).hexdigest().encode() in xml
    assert f'<location href="{FILENAME}"/>'.encode() in xml

    assert client.get("/static/repodata/primary.xml.gz").content == primary.content
    assert client.get("/static/repodata/filelists.xml.gz").status_code == 200
    assert client.get("/static/repodata/other.xml.gz").status_code == 200
    assert client.get("/static/repodata/comps.xml").status_code == 404


def test_rpm_download(client: TestClient, rpm_bytes: bytes) -> None:
    client.post("/static/__trigger-scheduled")

    response = client.get(f"/static/{FILENAME}")

    assert response.status_code == 200
    assert response.content == rpm_bytes
    assert response.headers["content-type"] == "application/x-rpm"
    assert response.headers["content-length"] == str(len(rpm_bytes))
    assert FILENAME in response.headers["content-disposition"]
    assert "max-age=2592000" in response.headers["cache-control"]


def test_rpm_not_in_ledger(client: TestClient) -> None:
    client.post("/static/__trigger-scheduled")
    assert client.get("/static/cursor-9.9.9-zzz.el8.x86_64.rpm").status_code == 404


def test_unknown_file(client: TestClient) -> None:
    assert client.get("/static/readme.txt").status_code == 404


def test_origin_failure(make_client) -> None:
    client = make_client(httpx.MockTransport(lambda request: httpx.Response(500)))

    client.post("/static/__trigger-scheduled")
    assert client.get(f"/static/{FILENAME}").status_code == 502


def test_error_status_mapping() -> None:
    assert error_status(NotFound("x")) == 404
    assert error_status(StorageUnavailable("x")) == 503
    assert error_status(FetchFailed("x")) == 502


def test_rpm_download_asks_for_identity_encoding(make_client, rpm_bytes: bytes, origin) -> None:
    requests: List[httpx.Request] = []
    client = make_client(origin({RPM_URL: rpm_bytes}, requests=requests))
    client.post("/static/__trigger-scheduled")
    requests.clear()

    response = client.get(f"/static/{FILENAME}")

    assert response.content == rpm_bytes
    assert [r.headers["accept-encoding"] for r in requests] == ["identity"]


def test_rpm_download_from_compressing_origin(make_client, client: TestClient, rpm_bytes: bytes) -> None:
    client.post("/static/__trigger-scheduled")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=gzip.compress(rpm_bytes), headers={"Content-Encoding": "gzip"})

    response = make_client(httpx.MockTransport(handler)).get(f"/static/{FILENAME}")

    assert response.status_code == 200
    assert response.content == rpm_bytes
    assert "content-encoding" not in response.headers
