"""Web API 端点测试"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import FakeTransport, make_tgz, registry_manifest

from fhircache.core.config import Config
from fhircache.services.container import ServiceContainer, reset_container, set_container
from fhircache.web.app import app

REG = "http://reg.test/"


@pytest.fixture()
def client(tmp_path: Path, transport: FakeTransport):
    """创建 Flask 测试客户端，临时缓存目录 + 内存传输层"""
    cfg = Config(cache_dir=str(tmp_path / "fhir"), registries=[REG], use_default_registries=False)
    set_container(ServiceContainer(cfg, transport=transport))
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c
    reset_container()


@pytest.fixture()
def published(transport: FakeTransport) -> None:
    transport.add_json(f"{REG}a.b", registry_manifest("a.b", ["1.0.0"], "1.0.0"))
    transport.add(f"{REG}a.b/1.0.0", make_tgz(
        "a.b", "1.0.0", fhir_versions=["4.0.1"],
        index={"index-version": 1, "files": [{"filename": "StructureDefinition-x.json"}]},
    ))


class TestGlobalErrorHandlers:
    def test_health(self, client) -> None:
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ok"

    def test_404_returns_json(self, client) -> None:
        resp = client.get("/api/nonexistent")
        assert resp.status_code == 404
        assert "error" in resp.get_json()

    def test_405_returns_json(self, client) -> None:
        resp = client.get("/api/packages/sync")
        assert resp.status_code == 405
        assert "error" in resp.get_json()


class TestResolve:
    def test_missing_body(self, client) -> None:
        resp = client.post("/api/packages/resolve", json={})
        assert resp.status_code == 400

    def test_parse_error(self, client) -> None:
        resp = client.post("/api/packages/resolve", json={"directive": "a#b#c"})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "DIRECTIVE_PARSE_ERROR"

    def test_unresolvable(self, client) -> None:
        resp = client.post("/api/packages/resolve", json={"directive": "some.pkg#1.0.0"})
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "RESOLUTION_ERROR"

    def test_download_failure(self, client, transport: FakeTransport) -> None:
        transport.add_json(f"{REG}a.b", registry_manifest("a.b", ["1.0.0"], "1.0.0"))
        transport.add(f"{REG}a.b/1.0.0", 500)
        resp = client.post("/api/packages/resolve", json={"directive": "a.b#1.0.0"})
        assert resp.status_code == 502
        assert resp.get_json()["code"] == "DOWNLOAD_ERROR"

    @pytest.mark.usefixtures("published")
    def test_resolve_directive(self, client) -> None:
        resp = client.post("/api/packages/resolve", json={"directive": "a.b"})
        assert resp.status_code == 200
        pkg = resp.get_json()["package"]
        assert pkg["directive"] == "a.b#1.0.0"
        assert pkg["fhir_release"] == "R4"

    def test_resolve_url(self, client, transport: FakeTransport) -> None:
        transport.add_json("http://hl7.org/fhir/us/core/package.manifest.json", {
            "name": "hl7.fhir.us.core", "version": "6.1.0",
        })
        transport.add("http://hl7.org/fhir/us/core/package.tgz", make_tgz("hl7.fhir.us.core", "6.1.0"))
        resp = client.post("/api/packages/resolve", json={"url": "http://hl7.org/fhir/us/core/"})
        assert resp.status_code == 200
        assert resp.get_json()["package"]["directive"] == "hl7.fhir.us.core#6.1.0"


@pytest.mark.usefixtures("published")
class TestCachedPackages:
    @pytest.fixture(autouse=True)
    def _resolved(self, client, published) -> None:
        assert client.post("/api/packages/resolve", json={"directive": "a.b#1.0.0"}).status_code == 200

    def test_list(self, client) -> None:
        data = client.get("/api/packages").get_json()
        assert [p["directive"] for p in data["packages"]] == ["a.b#1.0.0"]
        assert client.get("/api/packages?name=A.B&exact=1").get_json()["packages"]
        assert client.get("/api/packages?name=zzz").get_json()["packages"] == []

    def test_manifest(self, client) -> None:
        resp = client.get("/api/packages/a.b/1.0.0/manifest")
        assert resp.status_code == 200
        manifest = resp.get_json()["manifest"]
        assert manifest["name"] == "a.b"
        assert manifest["fhir_versions"] == ["4.0.1"]
        assert client.get("/api/packages/a.b/9.9.9/manifest").status_code == 404

    def test_index(self, client) -> None:
        resp = client.get("/api/packages/a.b/1.0.0/index")
        assert resp.status_code == 200
        assert resp.get_json()["index"]["files"][0]["filename"] == "StructureDefinition-x.json"
        assert client.get("/api/packages/a.b/9.9.9/index").status_code == 404

    def test_delete(self, client) -> None:
        assert client.delete("/api/packages/a.b/1.0.0").status_code == 200
        assert client.delete("/api/packages/a.b/1.0.0").status_code == 404
        assert client.get("/api/packages").get_json()["packages"] == []

    def test_sync(self, client) -> None:
        resp = client.post("/api/packages/sync")
        assert resp.status_code == 200
        assert json.loads(resp.data)["modified"] is False
