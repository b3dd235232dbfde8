"""远端文档与缓存记录模型测试"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from fhircache.core.models import (
    CacheRecord,
    CatalogEntry,
    PackageCacheEntry,
    PackageDetails,
    QasRecord,
    RegistryManifest,
    VersionInfo,
    normalize_build_date,
    utc_timestamp,
)


class TestNormalizeBuildDate:
    @pytest.mark.parametrize(("value", "expected"), [
        ("20240102030405", "20240102030405"),
        ("2024-01-02T03:04:05Z", "20240102030405"),
        ("2024-01-02T03:04:05+01:00", "20240102020405"),
        ("Tue, 02 Jan, 2024 03:04:05 +0000", "20240102030405"),
        ("", ""),
        ("yesterday", ""),
    ])
    def test_formats(self, value: str, expected: str) -> None:
        assert normalize_build_date(value) == expected

    def test_utc_timestamp_shape(self) -> None:
        ts = utc_timestamp()
        assert len(ts) == 14 and ts.isdigit()


class TestRegistryManifest:
    def test_from_dict(self) -> None:
        m = RegistryManifest.from_dict({
            "_id": "hl7.fhir.us.core",
            "dist-tags": {"latest": "6.1.0"},
            "versions": {
                "6.1.0": {
                    "name": "hl7.fhir.us.core", "version": "6.1.0", "fhirVersion": "4.0.1",
                    "dist": {"tarball": "http://reg/t", "shasum": "abc"},
                },
                "5.0.1": {},
            },
        }, registry="http://reg/")
        assert m.name == "hl7.fhir.us.core"
        assert m.latest == "6.1.0"
        assert m.has_version("5.0.1")
        assert m.versions["6.1.0"].tarball == "http://reg/t"
        assert m.versions["6.1.0"].shasum == "abc"
        assert m.versions["5.0.1"].version == "5.0.1"
        assert m.highest_version() == "6.1.0"
        assert m.highest_version("5.0.x") == "5.0.1"

    def test_catalog_entry_case_insensitive(self) -> None:
        e = CatalogEntry.from_dict({"Name": "hl7.fhir.uv.ig.r4", "FhirVersion": "4.0.1"})
        assert e.name == "hl7.fhir.uv.ig.r4"
        assert e.fhir_version == "4.0.1"


class TestQasRecord:
    def test_fields(self) -> None:
        r = QasRecord.from_dict({
            "package-id": "hl7.fhir.uv.ips",
            "ig-ver": "2.0.0",
            "dateISO8601": "2024-03-01T10:00:00+00:00",
            "date": "Fri, 01 Mar, 2024 10:00:00 +0000",
            "version": "4.0.1",
            "repo": "HL7/fhir-ips/branches/master/qa.json",
            "errs": "3",
            "warnings": None,
        })
        assert r.guide_version == "2.0.0"
        assert r.build_date == "20240301100000"
        assert r.branch == "master"
        assert r.org == "HL7"
        assert r.errs == 3 and r.warnings == 0

    def test_build_date_falls_back_to_rfc_date(self) -> None:
        r = QasRecord.from_dict({"package-id": "x", "date": "Fri, 01 Mar, 2024 10:00:00 +0000"})
        assert r.build_date == "20240301100000"


class TestVersionInfo:
    def test_parse(self) -> None:
        text = "[FHIR]\nFhirVersion=5.0.0\nversion=5.0.0\nbuildId=abc\ndate=20230326000000\n"
        info = VersionInfo.parse(text)
        assert info is not None
        assert info.fhir_version == "5.0.0"
        assert info.build_id == "abc"
        assert info.build_date == "20230326000000"

    @pytest.mark.parametrize("text", ["", "[Other]\na=1\n", "[FHIR]\nversion=1\n", "garbage"])
    def test_invalid(self, text: str) -> None:
        assert VersionInfo.parse(text) is None


class TestPackageDetails:
    @pytest.mark.parametrize(("data", "expected"), [
        ({"name": "a", "fhirVersions": ["4.0.1", "4.3.0"]}, ["4.0.1", "4.3.0"]),
        ({"name": "a", "fhir-version-list": ["3.0.2"]}, ["3.0.2"]),
        ({"name": "a", "fhirVersion": "[4.0.1]"}, ["4.0.1"]),
        ({"name": "a", "fhirVersion": "4.0.1"}, ["4.0.1"]),
        ({"name": "a"}, []),
    ])
    def test_fhir_versions(self, data: dict, expected: list[str]) -> None:
        assert PackageDetails.from_dict(data).fhir_versions == expected

    def test_author_object(self) -> None:
        d = PackageDetails.from_dict({"name": "a", "author": {"name": "HL7"}, "dependencies": {"b": "1.0.0"}})
        assert d.author == "HL7"
        assert d.dependencies == {"b": "1.0.0"}

    def test_loads_invalid(self) -> None:
        assert PackageDetails.loads("{not json") is None
        assert PackageDetails.loads("[]") is None

    def test_load_locations(self, tmp_path: Path) -> None:
        (tmp_path / "package").mkdir()
        (tmp_path / "package" / "package.json").write_text(
            json.dumps({"name": "a.b", "version": "1.0.0"}), encoding="utf-8",
        )
        assert PackageDetails.load(tmp_path).name == "a.b"  # type: ignore[union-attr]
        assert PackageDetails.load(tmp_path / "package" / "package.json").version == "1.0.0"  # type: ignore[union-attr]
        assert PackageDetails.load(tmp_path / "missing") is None


def test_cache_entry_from_record(tmp_path: Path) -> None:
    record = CacheRecord(
        directive="a.b#1.0.0", directory=tmp_path, name="a.b", version="1.0.0",
        fhir_sequence="R4", download_date_time="20240101000000", size=10,
    )
    entry = PackageCacheEntry.from_record(record)
    data = entry.to_dict()
    assert data["fhir_release"] == "R4"
    assert data["directory"] == str(tmp_path)
    assert json.dumps(data)
