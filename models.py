import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


def _uuid():
    return uuid.uuid4().hex


product_store_categories = Table(
    "product_store_categories",
    Base.metadata,
    Column("product_id", String(36), ForeignKey("products.id"), primary_key=True),
    Column("category_id", String(36), ForeignKey("categories.id"), primary_key=True),
)

variant_attribute_values = Table(
    "variant_attribute_values",
    Base.metadata,
    Column("variant_id", String(36), ForeignKey("product_variants.id"), primary_key=True),
    Column("attribute_value_id", String(36), ForeignKey("attribute_values.id"), primary_key=True),
)

selection_option_variants = Table(
    "selection_option_variants",
    Base.metadata,
    Column("option_id", String(36), ForeignKey("product_selection_options.id"), primary_key=True),
    Column("variant_id", String(36), ForeignKey("product_variants.id"), primary_key=True),
)


class Store(Base):
    __tablename__ = "stores"

    id = Column(String(36), primary_key=True, default=_uuid)
    store_name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)

    products = relationship("Product", back_populates="store")
    categories = relationship("Category", back_populates="store")


class Brand(Base):
    __tablename__ = "brands"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(128), nullable=False)
    description = Column(Text)
    image_url = Column(String(255))

    products = relationship("Product", back_populates="brand")


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    image_url = Column(String(255))
    parent_id = Column(String(36), ForeignKey("categories.id"))
    # Set for seller-defined store categories, empty for the platform tree.
    store_id = Column(String(36), ForeignKey("stores.id"))
    is_active = Column(Boolean, default=True)

    parent = relationship("Category", remote_side=[id], back_populates="children")
    children = relationship("Category", back_populates="parent")
    store = relationship("Store", back_populates="categories")
    products = relationship("Product", back_populates="category")


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    short_description = Column(String(512))
    category_id = Column(String(36), ForeignKey("categories.id"))
    store_id = Column(String(36), ForeignKey("stores.id"))
    brand_id = Column(String(36), ForeignKey("brands.id"))
    min_price = Column(Numeric(15, 2))
    max_price = Column(Numeric(15, 2))
    view_count = Column(Integer, default=0)
    sold_count = Column(Integer, default=0)
    average_rating = Column(Float)
    rating_count = Column(Integer, default=0)
    specs = Column(JSON)
    is_active = Column(Boolean, default=True)
    is_deleted = Column(Boolean, default=False)
    created_by = Column(String(128))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category = relationship("Category", back_populates="products")
    store = relationship("Store", back_populates="products")
    brand = relationship("Brand", back_populates="products")
    store_categories = relationship(
        "Category",
        secondary=product_store_categories,
        order_by="Category.name",
    )
    images = relationship(
        "ProductImage",
        back_populates="product",
        order_by="ProductImage.display_order",
        cascade="all, delete-orphan",
    )
    variants = relationship(
        "ProductVariant",
        back_populates="product",
        order_by="ProductVariant.sku",
        cascade="all, delete-orphan",
    )
    selection_groups = relationship(
        "ProductSelectionGroup",
        back_populates="product",
        order_by="ProductSelectionGroup.display_order",
        cascade="all, delete-orphan",
    )


class ProductImage(Base):
    __tablename__ = "product_images"

    id = Column(String(36), primary_key=True, default=_uuid)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    image_url = Column(String(512), nullable=False)
    display_order = Column(Integer, default=0)

    product = relationship("Product", back_populates="images")


class ProductAttribute(Base):
    __tablename__ = "product_attributes"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(128), nullable=False)

    values = relationship("AttributeValue", back_populates="attribute")


class AttributeValue(Base):
    __tablename__ = "attribute_values"

    id = Column(String(36), primary_key=True, default=_uuid)
    attribute_id = Column(String(36), ForeignKey("product_attributes.id"), nullable=False)
    value = Column(String(255), nullable=False)

    attribute = relationship("ProductAttribute", back_populates="values")


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(String(36), primary_key=True, default=_uuid)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    sku = Column(String(128), nullable=False)
    variant_name = Column(String(255))
    price = Column(Numeric(15, 2), nullable=False)
    original_price = Column(Numeric(15, 2))
    # "metadata" is reserved on declarative classes.
    variant_metadata = Column("metadata", JSON)
    is_active = Column(Boolean, default=True)
    is_deleted = Column(Boolean, default=False)

    product = relationship("Product", back_populates="variants")
    attribute_values = relationship(
        "AttributeValue",
        secondary=variant_attribute_values,
        order_by="AttributeValue.value",
    )
    inventory_stock = relationship(
        "InventoryStock",
        back_populates="variant",
        uselist=False,
        cascade="all, delete-orphan",
    )


class InventoryStock(Base):
    __tablename__ = "inventory_stocks"
    __table_args__ = (UniqueConstraint("variant_id", name="uq_inventory_stock_variant"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    variant_id = Column(String(36), ForeignKey("product_variants.id"), nullable=False)
    quantity_on_hand = Column(Integer, default=0)
    quantity_reserved = Column(Integer, default=0)

    variant = relationship("ProductVariant", back_populates="inventory_stock")

    @property
    def available_quantity(self):
        available = (self.quantity_on_hand or 0) - (self.quantity_reserved or 0)
        return max(available, 0)


class ProductSelectionGroup(Base):
    __tablename__ = "product_selection_groups"

    id = Column(String(36), primary_key=True, default=_uuid)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    display_order = Column(Integer, default=0)
    is_required = Column(Boolean, default=True)
    affects_variant = Column(Boolean, default=True)
    is_active = Column(Boolean, default=True)

    product = relationship("Product", back_populates="selection_groups")
    options = relationship(
        "ProductSelectionOption",
        back_populates="group",
        order_by="ProductSelectionOption.display_order",
        cascade="all, delete-orphan",
    )


class ProductSelectionOption(Base):
    __tablename__ = "product_selection_options"

    id = Column(String(36), primary_key=True, default=_uuid)
    group_id = Column(String(36), ForeignKey("product_selection_groups.id"), nullable=False)
    value = Column(String(255), nullable=False)
    label = Column(String(255))
    display_order = Column(Integer, default=0)
    image_url = Column(String(512))
    color_code = Column(String(32))
    is_available = Column(Boolean, default=True)
    is_active = Column(Boolean, default=True)

    group = relationship("ProductSelectionGroup", back_populates="options")
    variants = relationship(
        "ProductVariant",
        secondary=selection_option_variants,
        order_by="ProductVariant.sku",
    )
