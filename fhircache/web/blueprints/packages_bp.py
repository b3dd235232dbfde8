"""包缓存 API Blueprint"""

from __future__ import annotations

from flask import Blueprint, Response, request

from fhircache.web.responses import bad_request, not_found, ok

packages_bp = Blueprint("packages", __name__, url_prefix="/api/packages")


def _cache():  # type: ignore[no-untyped-def]
    from fhircache.services.container import get_container
    return get_container().cache


def _directive(name: str, version: str) -> str:
    return f"{name}#{version}"


@packages_bp.route("", methods=["GET"])
def list_all() -> Response:
    name = request.args.get("name", "")
    exact = request.args.get("exact", "") in ("1", "true")
    entries = _cache().local_packages(name, exact=exact)
    return ok({"packages": [e.to_dict() for e in entries]})  # type: ignore[return-value]


@packages_bp.route("/<name>/<version>/manifest", methods=["GET"])
def manifest(name: str, version: str) -> tuple[Response, int] | Response:
    from dataclasses import asdict
    details = _cache().get_manifest(_directive(name, version))
    if details is None:
        return not_found(f"包 {_directive(name, version)} ")
    return ok({"manifest": asdict(details)})


@packages_bp.route("/<name>/<version>/index", methods=["GET"])
def indexed_contents(name: str, version: str) -> tuple[Response, int] | Response:
    contents = _cache().get_indexed_contents(_directive(name, version))
    if contents is None:
        return not_found(f"包 {_directive(name, version)} 的资源清单")
    return ok({"index": contents})


@packages_bp.route("/resolve", methods=["POST"])
def resolve() -> tuple[Response, int] | Response:
    body = request.get_json(silent=True) or {}
    directive = str(body.get("directive", "")).strip()
    url = str(body.get("url", "")).strip()
    if not directive and not url:
        return bad_request("需要提供 directive 或 url")
    cache = _cache()
    if url:
        entry = cache.resolve_url(url)
    else:
        entry = cache.resolve(directive, fhir_release=str(body.get("release", "")))
    return ok({"package": entry.to_dict()})


@packages_bp.route("/<name>/<version>", methods=["DELETE"])
def delete(name: str, version: str) -> tuple[Response, int] | Response:
    directive = _directive(name, version)
    if _cache().delete_package(directive):
        return ok({"message": f"已删除: {directive}"})
    return not_found(f"包 {directive} ")


@packages_bp.route("/sync", methods=["POST"])
def sync() -> Response:
    modified = _cache().synchronize()
    return ok({"modified": modified})  # type: ignore[return-value]
