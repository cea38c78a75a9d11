from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field

from flask import current_app

from constants import SUGGEST_FIELDS, SUGGEST_MIN_PREFIX
from helpers import safe_text
from catalog_search.services.query_builder import build_ids_body, build_search_body
from catalog_search.services.search_index import BACKEND_ERRORS, ProductIndex, SearchBackendError


SUMMARY_FIELDS = (
    "id",
    "name",
    "short_description",
    "thumbnail_url",
    "min_price",
    "max_price",
    "sold_count",
    "view_count",
    "average_rating",
    "rating_count",
    "is_active",
    "store_id",
    "store_name",
    "category_id",
    "category_name",
    "brand_id",
    "brand_name",
    "created_at",
    "total_available_stock",
)


@dataclass
class Bucket:
    key: str
    label: str | None
    doc_count: int


@dataclass
class PriceRangeBucket:
    from_value: float | None
    to_value: float | None
    doc_count: int


@dataclass
class PriceAggregation:
    min: float | None = None
    max: float | None = None
    avg: float | None = None
    buckets: list[PriceRangeBucket] = field(default_factory=list)


@dataclass
class AttributeAggregation:
    attribute_id: str | None
    attribute_name: str
    values: list[Bucket] = field(default_factory=list)


@dataclass
class SearchAggregations:
    categories: list[Bucket] = field(default_factory=list)
    brands: list[Bucket] = field(default_factory=list)
    stores: list[Bucket] = field(default_factory=list)
    price_range: PriceAggregation | None = None
    average_rating: float | None = None
    attributes: list[AttributeAggregation] = field(default_factory=list)


@dataclass
class SearchHit:
    id: str
    score: float | None
    product: dict
    highlights: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class SearchResult:
    hits: list[SearchHit]
    total_hits: int
    total_pages: int
    current_page: int
    page_size: int
    took: int | None = None
    max_score: float | None = None
    aggregations: SearchAggregations | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _score(value):
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(value) else value


def _total(hits) -> int:
    total = hits.get("total", 0)
    if isinstance(total, dict):
        return int(total.get("value", 0))
    return int(total or 0)


def summarize(source: dict) -> dict:
    return {name: source.get(name) for name in SUMMARY_FIELDS}


def _labels(sources, id_field, name_field):
    labels = {}
    for source in sources:
        key = source.get(id_field)
        if key and source.get(name_field):
            labels.setdefault(str(key), source[name_field])
    return labels


def _buckets(aggregate, labels=None) -> list[Bucket]:
    labels = labels or {}
    results = []
    for bucket in (aggregate or {}).get("buckets", []):
        key = str(bucket.get("key"))
        results.append(Bucket(key=key, label=labels.get(key, key), doc_count=int(bucket.get("doc_count", 0))))
    return results


def _price_aggregation(stats, ranges) -> PriceAggregation:
    stats = stats or {}
    return PriceAggregation(
        min=stats.get("min"),
        max=stats.get("max"),
        avg=stats.get("avg"),
        buckets=[
            PriceRangeBucket(
                from_value=bucket.get("from"),
                to_value=bucket.get("to"),
                doc_count=int(bucket.get("doc_count", 0)),
            )
            for bucket in (ranges or {}).get("buckets", [])
        ],
    )


def _attribute_aggregations(aggregate) -> list[AttributeAggregation]:
    names = (aggregate or {}).get("attribute_names", {})
    results = []
    for bucket in names.get("buckets", []):
        id_buckets = bucket.get("attribute_ids", {}).get("buckets", [])
        results.append(
            AttributeAggregation(
                attribute_id=str(id_buckets[0]["key"]) if id_buckets else None,
                attribute_name=str(bucket.get("key")),
                values=_buckets(bucket.get("attribute_values")),
            )
        )
    return results


def decode_aggregations(aggregations: dict, sources: list[dict]) -> SearchAggregations:
    return SearchAggregations(
        categories=_buckets(
            aggregations.get("categories"), _labels(sources, "category_id", "category_name")
        ),
        brands=_buckets(aggregations.get("brands"), _labels(sources, "brand_id", "brand_name")),
        stores=_buckets(aggregations.get("stores"), _labels(sources, "store_id", "store_name")),
        price_range=_price_aggregation(
            aggregations.get("price_stats"), aggregations.get("price_ranges")
        ),
        average_rating=(aggregations.get("rating_avg") or {}).get("value"),
        attributes=_attribute_aggregations(aggregations.get("attributes")),
    )


class ProductSearchService:
    def __init__(self, app=None, index=None):
        self.app = app or current_app
        self.index = index or ProductIndex(self.app)

    def is_healthy(self) -> bool:
        return self.index.ping()

    def _page_size(self, size):
        default = int(self.app.config.get("SEARCH_DEFAULT_PAGE_SIZE", 20))
        limit = int(self.app.config.get("SEARCH_MAX_PAGE_SIZE", 100))
        if not size or size < 1:
            return default
        return min(size, limit)

    def search(self, request, page: int = 0, size: int | None = None) -> SearchResult:
        if not self.index.is_enabled():
            raise SearchBackendError("Elasticsearch is disabled")
        page = max(page or 0, 0)
        size = self._page_size(size)
        self.app.logger.info(
            "Searching products keyword=%r page=%s size=%s", request.keyword, page, size
        )
        body = build_search_body(
            request,
            page=page,
            size=size,
            aggregation_size=int(self.app.config.get("SEARCH_AGGREGATION_SIZE", 20)),
        )
        try:
            response = self.index.search(body)
        except BACKEND_ERRORS as exc:
            self.app.logger.warning("Elasticsearch search failed: %s", exc)
            raise SearchBackendError("Search failed") from exc
        return self._assemble(response, request, page, size)

    def _assemble(self, response, request, page, size) -> SearchResult:
        hits_meta = response.get("hits", {})
        raw_hits = hits_meta.get("hits", [])
        total = _total(hits_meta)
        hits = []
        sources = []
        for hit in raw_hits:
            source = hit.get("_source") or {}
            sources.append(source)
            hits.append(
                SearchHit(
                    id=str(hit.get("_id")),
                    score=_score(hit.get("_score")),
                    product=summarize(source),
                    highlights=dict(hit.get("highlight") or {}),
                )
            )
        aggregations = None
        if request.enable_aggregation and response.get("aggregations"):
            aggregations = decode_aggregations(response["aggregations"], sources)
        return SearchResult(
            hits=hits,
            total_hits=total,
            total_pages=math.ceil(total / size) if size else 0,
            current_page=page,
            page_size=size,
            took=response.get("took"),
            max_score=_score(hits_meta.get("max_score")),
            aggregations=aggregations,
        )

    def search_ids(self, request, page: int = 0, size: int | None = None) -> list[str]:
        if not self.index.is_enabled():
            return []
        size = self._page_size(size)
        try:
            response = self.index.search(build_ids_body(request, page=max(page or 0, 0), size=size))
        except (SearchBackendError, *BACKEND_ERRORS) as exc:
            self.app.logger.warning("Elasticsearch id search failed: %s", exc)
            return []
        return [str(hit["_id"]) for hit in response.get("hits", {}).get("hits", []) if hit.get("_id")]

    def suggest(self, prefix: str | None, limit: int = 10) -> list[str]:
        text_query = safe_text(prefix)
        if not text_query or len(text_query) < SUGGEST_MIN_PREFIX or limit < 1:
            return []
        if not self.index.is_enabled():
            return []
        body = {
            "size": limit,
            "source": ["name", "brand_name", "category_name"],
            "query": {
                "bool": {
                    "must": [
                        {
                            "multi_match": {
                                "query": text_query,
                                "fields": list(SUGGEST_FIELDS),
                                "type": "best_fields",
                                "fuzziness": "AUTO",
                                "prefix_length": 2,
                            }
                        }
                    ],
                    "filter": [
                        {"term": {"is_deleted": False}},
                        {"term": {"is_active": True}},
                    ],
                }
            },
        }
        try:
            response = self.index.search(body)
        except (SearchBackendError, *BACKEND_ERRORS) as exc:
            self.app.logger.warning("Elasticsearch suggest failed: %s", exc)
            return []
        names = []
        for hit in response.get("hits", {}).get("hits", []):
            name = (hit.get("_source") or {}).get("name")
            if name and name not in names:
                names.append(name)
        return names[:limit]
