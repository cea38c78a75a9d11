import os


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on", "t"}


def _env_int(name, default):
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name, default):
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


SEARCH_DEFAULTS = {
    "ELASTICSEARCH_ENABLED": _env_bool("ELASTICSEARCH_ENABLED", True),
    "ELASTICSEARCH_URL": os.environ.get("ELASTICSEARCH_URL", "http://localhost:9200"),
    "ELASTICSEARCH_INDEX": os.environ.get("ELASTICSEARCH_INDEX", "products"),
    "ELASTICSEARCH_TIMEOUT": _env_int("ELASTICSEARCH_TIMEOUT", 5),
    "ELASTICSEARCH_VERIFY_CERTS": _env_bool("ELASTICSEARCH_VERIFY_CERTS", False),
    "ELASTICSEARCH_USERNAME": os.environ.get("ELASTICSEARCH_USERNAME"),
    "ELASTICSEARCH_PASSWORD": os.environ.get("ELASTICSEARCH_PASSWORD"),
    "ELASTICSEARCH_BATCH_SIZE": _env_int("ELASTICSEARCH_BATCH_SIZE", 50),
    "ELASTICSEARCH_AUTO_INDEX": _env_bool("ELASTICSEARCH_AUTO_INDEX", True),
    "ELASTICSEARCH_INDEX_WORKERS": _env_int("ELASTICSEARCH_INDEX_WORKERS", 2),
    "SEARCH_INCREMENTAL_SYNC_ENABLED": _env_bool("SEARCH_INCREMENTAL_SYNC_ENABLED", True),
    "SEARCH_INCREMENTAL_SYNC_INTERVAL_SECONDS": _env_int(
        "SEARCH_INCREMENTAL_SYNC_INTERVAL_SECONDS", 300
    ),
    "SEARCH_INCREMENTAL_SYNC_INITIAL_DELAY_SECONDS": _env_int(
        "SEARCH_INCREMENTAL_SYNC_INITIAL_DELAY_SECONDS", 600
    ),
    "SEARCH_SYNC_ON_WRITE": _env_bool("SEARCH_SYNC_ON_WRITE", True),
    "SEARCH_DRIFT_WARNING_RATIO": _env_float("SEARCH_DRIFT_WARNING_RATIO", 0.9),
    "SEARCH_AGGREGATION_SIZE": _env_int("SEARCH_AGGREGATION_SIZE", 20),
    "SEARCH_DEFAULT_PAGE_SIZE": _env_int("SEARCH_DEFAULT_PAGE_SIZE", 20),
    "SEARCH_MAX_PAGE_SIZE": _env_int("SEARCH_MAX_PAGE_SIZE", 100),
}

SORT_FIELDS = {
    "price": "min_price",
    "sold": "sold_count",
    "rating": "average_rating",
    "newest": "created_at",
    "views": "view_count",
}

KEYWORD_FIELDS = [
    "name^3",
    "name.autocomplete^2",
    "short_description^1.5",
    "description",
    "brand_name^1.5",
    "category_name",
    "specs_text",
    "variants.metadata_text",
    "variants.variant_name",
    "selection_options_text",
    "selection_groups.name",
    "selection_groups.options.value",
    "selection_groups.options.label",
]

SUGGEST_FIELDS = [
    "name.autocomplete^3",
    "name^2",
    "brand_name",
    "category_name",
]

SUGGEST_MIN_PREFIX = 2

# Upper bounds are exclusive, matching range aggregation semantics.
PRICE_RANGE_BUCKETS = [
    (None, 100000),
    (100000, 500000),
    (500000, 1000000),
    (1000000, 5000000),
    (5000000, None),
]

ATTRIBUTE_NAME_BUCKETS = 10
ATTRIBUTE_VALUE_BUCKETS = 20

SUGGESTION_WEIGHT_MIN = 1
SUGGESTION_WEIGHT_MAX = 100

HIGHLIGHT_PRE_TAG = "<em>"
HIGHLIGHT_POST_TAG = "</em>"
