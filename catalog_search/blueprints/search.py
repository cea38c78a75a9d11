from flask import Blueprint, current_app, jsonify, request

from helpers import parse_int
from catalog_search.services.query_builder import SearchRequest
from catalog_search.services.search_index import SearchBackendError


search_bp = Blueprint("search", __name__, url_prefix="/products/search")


def _search_service():
    return current_app.extensions["product_search"]


def _sync_service():
    return current_app.extensions["search_sync"]


def _request_payload():
    if request.method == "POST":
        payload = request.get_json(silent=True)
        if isinstance(payload, dict):
            return payload
    return request.args.to_dict()


def _paging(payload):
    page = parse_int(request.args.get("page", payload.get("page")), 0)
    size = parse_int(request.args.get("size", payload.get("size")), None)
    return max(page, 0), size


@search_bp.route("", methods=["GET", "POST"])
def search_products():
    payload = _request_payload()
    page, size = _paging(payload)
    try:
        result = _search_service().search(SearchRequest.from_dict(payload), page=page, size=size)
    except SearchBackendError as exc:
        current_app.logger.warning("Product search unavailable: %s", exc)
        return jsonify({"success": False, "message": "Search is unavailable"}), 503
    return jsonify(result.to_dict())


@search_bp.route("/ids", methods=["GET", "POST"])
def search_product_ids():
    payload = _request_payload()
    page, size = _paging(payload)
    ids = _search_service().search_ids(SearchRequest.from_dict(payload), page=page, size=size)
    return jsonify({"ids": ids})


@search_bp.route("/suggest")
def suggest():
    prefix = request.args.get("q") or request.args.get("prefix")
    limit = parse_int(request.args.get("limit"), 10)
    return jsonify({"suggestions": _search_service().suggest(prefix, limit)})


@search_bp.route("/health")
def health():
    return jsonify({"healthy": _search_service().is_healthy()})


@search_bp.route("/sync-stats")
def sync_stats():
    return jsonify(_sync_service().get_sync_stats())


@search_bp.route("/reindex/<product_id>", methods=["POST"])
def reindex_product(product_id):
    _sync_service().index_one(product_id)
    return jsonify({"success": True}), 202


@search_bp.route("/reindex-all", methods=["POST"])
def reindex_all():
    if not _sync_service().reindex_all():
        return jsonify({"success": False, "message": "Full sync already in progress"}), 409
    return jsonify({"success": True}), 202


@search_bp.route("/reindex-all/cancel", methods=["POST"])
def cancel_reindex_all():
    cancelled = _sync_service().cancel_full_sync()
    return jsonify({"success": cancelled})
