from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from constants import (
    ATTRIBUTE_NAME_BUCKETS,
    ATTRIBUTE_VALUE_BUCKETS,
    HIGHLIGHT_POST_TAG,
    HIGHLIGHT_PRE_TAG,
    KEYWORD_FIELDS,
    PRICE_RANGE_BUCKETS,
    SORT_FIELDS,
)
from helpers import parse_bool, parse_decimal, parse_float, parse_list, safe_text


@dataclass
class AttributeFilter:
    attribute_id: str
    values: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload):
        return cls(
            attribute_id=safe_text(payload.get("attribute_id") or payload.get("attributeId")),
            values=parse_list(payload.get("values")),
        )


@dataclass
class SearchRequest:
    keyword: str | None = None
    category_id: str | None = None
    category_ids: list[str] = field(default_factory=list)
    store_id: str | None = None
    store_ids: list[str] = field(default_factory=list)
    brand_id: str | None = None
    brand_ids: list[str] = field(default_factory=list)
    price_from: Decimal | None = None
    price_to: Decimal | None = None
    min_rating: float | None = None
    is_active: bool | None = None
    attribute_filters: list[AttributeFilter] = field(default_factory=list)
    sort_by: str | None = None
    sort_direction: str | None = None
    enable_fuzzy: bool = False
    enable_highlight: bool = False
    enable_aggregation: bool = False

    @classmethod
    def from_dict(cls, payload):
        """Build a request from JSON or query-string data, accepting camelCase keys."""

        def pick(snake, camel=None):
            if snake in payload:
                return payload.get(snake)
            return payload.get(camel) if camel else None

        filters = pick("attribute_filters", "attributeFilters") or []
        return cls(
            keyword=safe_text(pick("keyword")),
            category_id=safe_text(pick("category_id", "categoryId")),
            category_ids=parse_list(pick("category_ids", "categoryIds")),
            store_id=safe_text(pick("store_id", "storeId")),
            store_ids=parse_list(pick("store_ids", "storeIds")),
            brand_id=safe_text(pick("brand_id", "brandId")),
            brand_ids=parse_list(pick("brand_ids", "brandIds")),
            price_from=parse_decimal(pick("price_from", "priceFrom")),
            price_to=parse_decimal(pick("price_to", "priceTo")),
            min_rating=parse_float(pick("min_rating", "minRating")),
            is_active=parse_bool(pick("is_active", "isActive")),
            attribute_filters=[
                AttributeFilter.from_dict(item) for item in filters if isinstance(item, dict)
            ],
            sort_by=safe_text(pick("sort_by", "sortBy")),
            sort_direction=safe_text(pick("sort_direction", "sortDirection")),
            enable_fuzzy=bool(parse_bool(pick("enable_fuzzy", "enableFuzzy"))),
            enable_highlight=bool(parse_bool(pick("enable_highlight", "enableHighlight"))),
            enable_aggregation=bool(parse_bool(pick("enable_aggregation", "enableAggregation"))),
        )


def _id_filter(field_name, single, many):
    if single:
        return {"term": {field_name: single}}
    if many:
        return {"terms": {field_name: list(many)}}
    return None


def _keyword_query(request):
    return {
        "multi_match": {
            "query": request.keyword.strip(),
            "fields": list(KEYWORD_FIELDS),
            "type": "best_fields",
            "fuzziness": "AUTO" if request.enable_fuzzy else "0",
            "prefix_length": 2,
            "minimum_should_match": "75%",
        }
    }


def _price_filter(price_from, price_to):
    bounds = {}
    if price_from is not None:
        bounds["gte"] = float(price_from)
    if price_to is not None:
        bounds["lte"] = float(price_to)
    return {"range": {"min_price": bounds}}


def _attribute_filter(attribute_filter):
    # Both terms sit in one nested clause so they must match the same attribute entry.
    should = [
        {
            "bool": {
                "must": [
                    {"term": {"attributes.attribute_id": attribute_filter.attribute_id}},
                    {"term": {"attributes.value": value}},
                ]
            }
        }
        for value in attribute_filter.values
    ]
    return {
        "nested": {
            "path": "attributes",
            "query": {"bool": {"should": should, "minimum_should_match": 1}},
        }
    }


def build_filters(request) -> list[dict]:
    filters = []
    for field_name, single, many in (
        ("category_id", request.category_id, request.category_ids),
        ("store_id", request.store_id, request.store_ids),
        ("brand_id", request.brand_id, request.brand_ids),
    ):
        clause = _id_filter(field_name, single, many)
        if clause:
            filters.append(clause)

    if request.price_from is not None or request.price_to is not None:
        filters.append(_price_filter(request.price_from, request.price_to))

    if request.min_rating is not None:
        filters.append({"range": {"average_rating": {"gte": request.min_rating}}})

    if request.is_active is None or request.is_active:
        filters.append({"term": {"is_active": True}})
    filters.append({"term": {"is_deleted": False}})

    for attribute_filter in request.attribute_filters:
        if attribute_filter.attribute_id and attribute_filter.values:
            filters.append(_attribute_filter(attribute_filter))
    return filters


def build_query(request) -> dict:
    must = []
    if request.keyword and request.keyword.strip():
        must.append(_keyword_query(request))
    query = {"bool": {"filter": build_filters(request)}}
    if must:
        query["bool"]["must"] = must
    return query


def build_sort(request) -> list:
    sort_by = (request.sort_by or "").strip().lower()
    order = "asc" if (request.sort_direction or "").lower() == "asc" else "desc"
    sort_clause = []
    field_name = SORT_FIELDS.get(sort_by)
    if field_name:
        sort_clause.append({field_name: {"order": order, "missing": "_last"}})
    sort_clause.append({"_score": {"order": "desc"}})
    return sort_clause


def build_highlight() -> dict:
    return {
        "pre_tags": [HIGHLIGHT_PRE_TAG],
        "post_tags": [HIGHLIGHT_POST_TAG],
        "fields": {
            "name": {"number_of_fragments": 0},
            "description": {"fragment_size": 150, "number_of_fragments": 3},
        },
    }


def _range_bucket(lower, upper):
    bucket = {}
    if lower is not None:
        bucket["from"] = lower
    if upper is not None:
        bucket["to"] = upper
    return bucket


def build_aggregations(size=20) -> dict:
    return {
        "categories": {"terms": {"field": "category_id", "size": size}},
        "brands": {"terms": {"field": "brand_id", "size": size}},
        "stores": {"terms": {"field": "store_id", "size": size}},
        "price_stats": {"stats": {"field": "min_price"}},
        "price_ranges": {
            "range": {
                "field": "min_price",
                "ranges": [_range_bucket(lower, upper) for lower, upper in PRICE_RANGE_BUCKETS],
            }
        },
        "rating_avg": {"avg": {"field": "average_rating"}},
        "attributes": {
            "nested": {"path": "attributes"},
            "aggs": {
                "attribute_names": {
                    "terms": {"field": "attributes.attribute_name", "size": ATTRIBUTE_NAME_BUCKETS},
                    "aggs": {
                        "attribute_ids": {"terms": {"field": "attributes.attribute_id", "size": 1}},
                        "attribute_values": {
                            "terms": {"field": "attributes.value", "size": ATTRIBUTE_VALUE_BUCKETS}
                        },
                    },
                }
            },
        },
    }


def build_search_body(request, page=0, size=20, aggregation_size=20) -> dict:
    body = {
        "query": build_query(request),
        "from_": max(page, 0) * size,
        "size": size,
        "sort": build_sort(request),
        "track_total_hits": True,
    }
    if request.enable_highlight:
        body["highlight"] = build_highlight()
    if request.enable_aggregation:
        body["aggs"] = build_aggregations(aggregation_size)
    return body


def build_ids_body(request, page=0, size=20) -> dict:
    return {
        "query": build_query(request),
        "from_": max(page, 0) * size,
        "size": size,
        "sort": build_sort(request),
        "source": False,
    }
