"""
Flatten a product aggregate from the relational catalog into one search document.

The mapper only reads. Every related lookup is isolated so a failing lookup
degrades that field to its empty value instead of dropping the document.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

import database
from constants import SUGGESTION_WEIGHT_MAX, SUGGESTION_WEIGHT_MIN
from helpers import finite_float, safe_text, to_float, to_iso


MAX_CATEGORY_DEPTH = 10

T = TypeVar("T")


@dataclass(frozen=True)
class ScalarSpec:
    text: str


@dataclass(frozen=True)
class MeasuredSpec:
    value: str
    unit: str | None = None


def parse_spec_value(raw):
    """Tag a raw spec value; ``None`` means there is nothing to emit."""
    if raw is None:
        return None
    if isinstance(raw, (ScalarSpec, MeasuredSpec)):
        return raw
    if isinstance(raw, dict):
        value = raw.get("value")
        if value is None:
            return None
        unit = raw.get("unit")
        return MeasuredSpec(str(value), str(unit) if unit is not None else None)
    return ScalarSpec(str(raw))


def flatten_specs(specs) -> tuple[str | None, list[dict]]:
    """Return ``(text, entries)`` for a product spec map or a variant metadata map."""
    if not specs or not isinstance(specs, dict):
        return None, []
    parts = []
    entries = []
    for key, raw in specs.items():
        spec = parse_spec_value(raw)
        if isinstance(spec, MeasuredSpec):
            part = f"{key}: {spec.value}"
            if spec.unit is not None:
                part = f"{part} {spec.unit}"
            parts.append(part)
            entries.append({"key": str(key), "value": spec.value, "unit": spec.unit})
        elif isinstance(spec, ScalarSpec):
            parts.append(f"{key}: {spec.text}")
            entries.append({"key": str(key), "value": spec.text, "unit": None})
    text = ". ".join(parts)
    return (f"{text}." if text else None), entries


def suggestion_weight(sold_count=None, view_count=None, average_rating=None) -> int:
    weight = SUGGESTION_WEIGHT_MIN
    if sold_count:
        weight += min(max(int(sold_count), 0) // 10, 50)
    rating = finite_float(average_rating)
    if rating:
        weight += max(int(rating * 5), 0)
    if view_count:
        weight += min(max(int(view_count), 0) // 100, 20)
    return max(SUGGESTION_WEIGHT_MIN, min(weight, SUGGESTION_WEIGHT_MAX))


def build_suggestion(name, brand_name=None, category_name=None, **counters) -> dict:
    inputs = []

    def add(value):
        text = safe_text(value)
        if text and text not in inputs:
            inputs.append(text)

    add(name)
    if brand_name:
        add(brand_name)
        if name:
            add(f"{brand_name} {name}")
    add(category_name)
    return {"input": inputs, "weight": suggestion_weight(**counters)}


class ProductDocumentMapper:
    def __init__(self, session, app=None):
        self.session = session
        self.app = app or current_app

    def _safe(self, label: str, loader: Callable[[], T], default: T) -> T:
        try:
            value = loader()
        except SQLAlchemyError as exc:
            self.app.logger.warning("Search mapping lookup '%s' failed: %s", label, exc)
            return default
        return default if value is None else value

    def to_document(self, product) -> dict | None:
        if product is None:
            return None

        image = self._safe("thumbnail", lambda: database.first_image(self.session, product.id), None)
        category = self._safe("category", lambda: product.category, None)
        brand = self._safe("brand", lambda: product.brand, None)
        store = self._safe("store", lambda: product.store, None)
        store_categories = self._safe("store_categories", lambda: list(product.store_categories), [])
        variants = self._safe(
            "variants", lambda: database.variants_for_product(self.session, product.id), []
        )
        groups = self._safe("selection_groups", lambda: list(product.selection_groups), [])

        live_variants = [variant for variant in variants if not variant.is_deleted]
        specs_text, specs_entries = flatten_specs(product.specs)
        category_name = category.name if category else None
        brand_name = brand.name if brand else None

        return {
            "id": product.id,
            "name": product.name,
            "description": product.description,
            "short_description": product.short_description,
            "category_id": category.id if category else None,
            "category_name": category_name,
            "category_path": self._category_path(category),
            "store_id": store.id if store else None,
            "store_name": store.store_name if store else None,
            "brand_id": brand.id if brand else None,
            "brand_name": brand_name,
            "min_price": to_float(product.min_price),
            "max_price": to_float(product.max_price),
            "view_count": product.view_count,
            "sold_count": product.sold_count,
            "average_rating": finite_float(product.average_rating),
            "rating_count": product.rating_count,
            "is_active": bool(product.is_active),
            "is_deleted": bool(product.is_deleted),
            "thumbnail_url": image.image_url if image else None,
            "created_at": to_iso(product.created_at),
            "updated_at": to_iso(product.updated_at),
            "created_by": product.created_by,
            "variants": [self._variant(variant) for variant in live_variants],
            "attributes": self._attributes(live_variants),
            "specs_text": specs_text,
            "specs_entries": specs_entries,
            "store_category_ids": [item.id for item in store_categories],
            "store_category_names": [item.name for item in store_categories],
            "selection_groups": [self._selection_group(group) for group in groups if group.is_active],
            "selection_options_text": self._selection_options_text(groups),
            "total_available_stock": sum(
                self._available_stock(variant) for variant in live_variants if variant.is_active
            ),
            "suggest": build_suggestion(
                product.name,
                brand_name=brand_name,
                category_name=category_name,
                sold_count=product.sold_count,
                view_count=product.view_count,
                average_rating=finite_float(product.average_rating),
            ),
        }

    def _category_path(self, category) -> list[str]:
        if category is None:
            return []
        path = []
        try:
            node = category
            while node is not None and len(path) < MAX_CATEGORY_DEPTH:
                path.insert(0, node.id)
                node = node.parent
        except SQLAlchemyError as exc:
            self.app.logger.warning(
                "Building category path for %s failed: %s", category.id, exc
            )
            return [category.id]
        return path

    @staticmethod
    def _available_stock(variant) -> int:
        stock = variant.inventory_stock
        return stock.available_quantity if stock is not None else 0

    def _variant(self, variant) -> dict:
        metadata_text, metadata_entries = flatten_specs(variant.variant_metadata)
        return {
            "id": variant.id,
            "sku": variant.sku,
            "variant_name": variant.variant_name,
            "price": to_float(variant.price),
            "original_price": to_float(variant.original_price),
            "is_active": bool(variant.is_active),
            "stock_quantity": self._available_stock(variant),
            "metadata_text": metadata_text,
            "metadata_entries": metadata_entries,
        }

    @staticmethod
    def _attributes(variants) -> list[dict]:
        seen = set()
        attributes = []
        for variant in variants:
            for attribute_value in variant.attribute_values or []:
                attribute = attribute_value.attribute
                key = (attribute.id, attribute_value.id)
                if key in seen:
                    continue
                seen.add(key)
                attributes.append(
                    {
                        "attribute_id": attribute.id,
                        "attribute_name": attribute.name,
                        "value_id": attribute_value.id,
                        "value": attribute_value.value,
                    }
                )
        return attributes

    def _selection_group(self, group) -> dict:
        return {
            "id": group.id,
            "name": group.name,
            "description": group.description,
            "display_order": group.display_order,
            "is_required": bool(group.is_required),
            "affects_variant": bool(group.affects_variant),
            "options": [
                {
                    "id": option.id,
                    "value": option.value,
                    "label": option.label,
                    "display_order": option.display_order,
                    "image_url": option.image_url,
                    "color_code": option.color_code,
                    "is_available": bool(option.is_available),
                    "linked_variant_ids": [
                        variant.id
                        for variant in self._safe("option_variants", lambda: list(option.variants), [])
                        if variant.is_active and not variant.is_deleted
                    ],
                }
                for option in group.options
                if option.is_active
            ],
        }

    @staticmethod
    def _selection_options_text(groups) -> str | None:
        parts = []
        for group in groups:
            if not group.is_active:
                continue
            labels = [
                safe_text(option.label) or option.value
                for option in group.options
                if option.is_active
            ]
            if labels:
                parts.append(f"{group.name}: {', '.join(labels)}.")
        return " ".join(parts) or None
