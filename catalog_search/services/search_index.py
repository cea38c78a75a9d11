from __future__ import annotations

from typing import Iterable

from elasticsearch import Elasticsearch, helpers
from elasticsearch import exceptions as es_exceptions
from flask import current_app


BACKEND_ERRORS = (es_exceptions.ApiError, es_exceptions.TransportError)


class SearchBackendError(RuntimeError):
    """The search index is disabled, unreachable or rejected the query."""


REQUIRED_FIELDS = [
    "name",
    "category_path",
    "variants",
    "attributes",
    "specs_entries",
    "selection_groups",
    "suggest",
    "is_deleted",
]


def _text(**extra):
    field = {"type": "text", "analyzer": "catalog_text"}
    field.update(extra)
    return field


def _text_with_keyword():
    return _text(fields={"keyword": {"type": "keyword", "ignore_above": 256}})


def _spec_entry_mapping():
    return {
        "type": "nested",
        "properties": {
            "key": {"type": "keyword"},
            "value": _text(),
            "unit": {"type": "keyword"},
        },
    }


def index_settings():
    return {
        "settings": {
            "analysis": {
                "filter": {
                    "autocomplete_filter": {
                        "type": "edge_ngram",
                        "min_gram": 2,
                        "max_gram": 20,
                    }
                },
                "analyzer": {
                    "catalog_text": {
                        "tokenizer": "standard",
                        "filter": ["lowercase", "asciifolding"],
                    },
                    "autocomplete_index": {
                        "tokenizer": "standard",
                        "filter": ["lowercase", "asciifolding", "autocomplete_filter"],
                    },
                    "autocomplete_search": {
                        "tokenizer": "standard",
                        "filter": ["lowercase", "asciifolding"],
                    },
                },
            }
        },
        "mappings": {
            "properties": {
                "id": {"type": "keyword"},
                "name": _text(
                    fields={
                        "keyword": {"type": "keyword", "ignore_above": 256},
                        "autocomplete": {
                            "type": "text",
                            "analyzer": "autocomplete_index",
                            "search_analyzer": "autocomplete_search",
                        },
                    }
                ),
                "description": _text(),
                "short_description": _text(),
                "category_id": {"type": "keyword"},
                "category_name": _text_with_keyword(),
                "category_path": {"type": "keyword"},
                "store_id": {"type": "keyword"},
                "store_name": _text_with_keyword(),
                "brand_id": {"type": "keyword"},
                "brand_name": _text_with_keyword(),
                "min_price": {"type": "scaled_float", "scaling_factor": 100},
                "max_price": {"type": "scaled_float", "scaling_factor": 100},
                "view_count": {"type": "long"},
                "sold_count": {"type": "integer"},
                "average_rating": {"type": "float"},
                "rating_count": {"type": "integer"},
                "is_active": {"type": "boolean"},
                "is_deleted": {"type": "boolean"},
                "thumbnail_url": {"type": "keyword", "index": False},
                "created_at": {"type": "date"},
                "updated_at": {"type": "date"},
                "created_by": {"type": "keyword"},
                # Copied into the parent so top-level multi_match reaches variant text.
                "variants": {
                    "type": "nested",
                    "include_in_parent": True,
                    "properties": {
                        "id": {"type": "keyword"},
                        "sku": {"type": "keyword"},
                        "variant_name": _text(),
                        "price": {"type": "scaled_float", "scaling_factor": 100},
                        "original_price": {"type": "scaled_float", "scaling_factor": 100},
                        "is_active": {"type": "boolean"},
                        "stock_quantity": {"type": "integer"},
                        "metadata_text": _text(),
                        "metadata_entries": _spec_entry_mapping(),
                    },
                },
                # Not copied to the parent: attribute id and value must match on one entry.
                "attributes": {
                    "type": "nested",
                    "properties": {
                        "attribute_id": {"type": "keyword"},
                        "attribute_name": {"type": "keyword"},
                        "value_id": {"type": "keyword"},
                        "value": {"type": "keyword"},
                    },
                },
                "specs_text": _text(),
                "specs_entries": _spec_entry_mapping(),
                "store_category_ids": {"type": "keyword"},
                "store_category_names": _text(),
                "suggest": {
                    "type": "completion",
                    "analyzer": "simple",
                    "search_analyzer": "simple",
                    "max_input_length": 100,
                },
                "selection_groups": {
                    "type": "nested",
                    "include_in_parent": True,
                    "properties": {
                        "id": {"type": "keyword"},
                        "name": _text_with_keyword(),
                        "description": _text(),
                        "display_order": {"type": "integer"},
                        "is_required": {"type": "boolean"},
                        "affects_variant": {"type": "boolean"},
                        "options": {
                            "type": "nested",
                            "include_in_parent": True,
                            "properties": {
                                "id": {"type": "keyword"},
                                "value": _text_with_keyword(),
                                "label": _text(),
                                "display_order": {"type": "integer"},
                                "image_url": {"type": "keyword", "index": False},
                                "color_code": {"type": "keyword"},
                                "is_available": {"type": "boolean"},
                                "linked_variant_ids": {"type": "keyword"},
                            },
                        },
                    },
                },
                "selection_options_text": _text(),
                "total_available_stock": {"type": "integer"},
            }
        },
    }


def response_body(response):
    return getattr(response, "body", response) or {}


class ProductIndex:
    """Thin gateway over the product index: lifecycle, writes, counts and raw reads."""

    def __init__(self, app=None):
        self.app = app or current_app

    def is_enabled(self) -> bool:
        return bool(self.app.config.get("ELASTICSEARCH_ENABLED", False))

    def _client(self):
        client = self.app.extensions.get("elasticsearch")
        if client is not None:
            return client
        url = self.app.config.get("ELASTICSEARCH_URL")
        if not url:
            return None
        timeout = self.app.config.get("ELASTICSEARCH_TIMEOUT", 5)
        verify_certs = bool(self.app.config.get("ELASTICSEARCH_VERIFY_CERTS", False))
        username = self.app.config.get("ELASTICSEARCH_USERNAME")
        password = self.app.config.get("ELASTICSEARCH_PASSWORD")
        kwargs = {
            "request_timeout": timeout,
            "verify_certs": verify_certs,
        }
        if username and password:
            kwargs["basic_auth"] = (username, password)
        client = Elasticsearch(url, **kwargs)
        self.app.extensions["elasticsearch"] = client
        return client

    def index_name(self) -> str:
        return self.app.config.get("ELASTICSEARCH_INDEX", "products")

    def ping(self) -> bool:
        if not self.is_enabled():
            return False
        client = self._client()
        if client is None:
            return False
        try:
            return bool(client.ping())
        except BACKEND_ERRORS:
            return False

    def ensure_index(self) -> bool:
        if not self.is_enabled():
            return False
        client = self._client()
        if client is None:
            return False
        index = self.index_name()
        try:
            if client.indices.exists(index=index):
                return True
            client.indices.create(index=index, **index_settings())
            self.app.logger.info("Created Elasticsearch index %s", index)
            return True
        except BACKEND_ERRORS as exc:
            self.app.logger.warning("Elasticsearch index setup failed: %s", exc)
            return False

    def mapping_has_fields(self, fields: list[str]) -> bool:
        if not fields:
            return True
        client = self._client()
        if client is None:
            return False
        index = self.index_name()
        try:
            mapping = response_body(client.indices.get_mapping(index=index))
        except BACKEND_ERRORS as exc:
            self.app.logger.warning("Elasticsearch mapping check failed: %s", exc)
            return False
        index_mapping = mapping.get(index, {}).get("mappings", {}).get("properties", {})
        return all(field in index_mapping for field in fields)

    def rebuild_index(self) -> bool:
        """Drop and recreate the index, leaving it empty with the current mapping."""
        if not self.is_enabled():
            return False
        client = self._client()
        if client is None:
            return False
        index = self.index_name()
        try:
            if client.indices.exists(index=index):
                client.indices.delete(index=index)
            client.indices.create(index=index, **index_settings())
            return True
        except BACKEND_ERRORS as exc:
            self.app.logger.warning("Elasticsearch rebuild failed: %s", exc)
            return False

    def count_documents(self) -> int | None:
        if not self.is_enabled():
            return None
        client = self._client()
        if client is None:
            return None
        try:
            response = response_body(client.count(index=self.index_name()))
            return int(response.get("count", 0))
        except BACKEND_ERRORS as exc:
            self.app.logger.warning("Elasticsearch count failed: %s", exc)
            return None

    def bulk_upsert(self, documents: Iterable[dict], raise_on_failure: bool = False) -> int:
        if not self.is_enabled():
            return 0
        client = self._client()
        if client is None:
            return 0
        index = self.index_name()
        actions = [
            {
                "_index": index,
                "_id": document["id"],
                "_source": document,
            }
            for document in documents
        ]
        if not actions:
            return 0
        try:
            success, errors = helpers.bulk(client, actions, raise_on_error=False)
        except BACKEND_ERRORS as exc:
            if raise_on_failure:
                raise
            self.app.logger.warning("Elasticsearch bulk index failed: %s", exc)
            return 0
        if errors:
            self.app.logger.warning(
                "Elasticsearch bulk index rejected %s documents: %s", len(errors), errors[:3]
            )
        return success or 0

    def upsert(self, document: dict) -> bool:
        if not self.is_enabled():
            return False
        client = self._client()
        if client is None:
            return False
        try:
            client.index(index=self.index_name(), id=document["id"], document=document)
            self.app.logger.debug("Indexed product %s", document["id"])
            return True
        except BACKEND_ERRORS as exc:
            self.app.logger.warning("Elasticsearch index of %s failed: %s", document["id"], exc)
            return False

    def delete(self, product_id: str) -> bool:
        if not self.is_enabled():
            return False
        client = self._client()
        if client is None:
            return False
        try:
            client.delete(index=self.index_name(), id=str(product_id))
            self.app.logger.debug("Removed product %s from the index", product_id)
            return True
        except es_exceptions.NotFoundError:
            return True
        except BACKEND_ERRORS as exc:
            self.app.logger.warning("Elasticsearch delete of %s failed: %s", product_id, exc)
            return False

    def search(self, body: dict) -> dict:
        """Run a search; backend errors propagate to the caller."""
        client = self._client()
        if client is None:
            raise SearchBackendError("Elasticsearch client is not configured")
        return response_body(client.search(index=self.index_name(), **body))
