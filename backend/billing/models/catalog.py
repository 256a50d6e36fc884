from __future__ import annotations

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from ..time_utils import to_utc_z

PRODUCT_TYPE_PRODUCT = "product"
PRODUCT_TYPE_RAW_MATERIAL = "raw_material"
PRODUCT_TYPES = (PRODUCT_TYPE_PRODUCT, PRODUCT_TYPE_RAW_MATERIAL)


class Product(db.Model):
    """
    Product master data: sellable goods and kitchen raw materials.

    STOCK DESIGN DECISION:
    stock_quantity is a cached projection of inventory_movements. It is
    read-only on the model; only inventory_service writes the underlying
    column, in the same transaction that appends the movement.

    Quantities are integers in the product's base unit (g, ml, piece), so
    recipe consumption stays exact.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("tax_rate_bps >= 0 AND tax_rate_bps <= 10000", name="ck_products_tax_rate"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_products_unit_price"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    unit = db.Column(db.String(32), nullable=False, default="piece")
    type = db.Column(db.String(16), nullable=False, default=PRODUCT_TYPE_PRODUCT)
    hsn_code = db.Column(db.String(32), nullable=True)

    # Authoritative storage in cents / basis points
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=1800)

    _stock_quantity = db.Column("stock_quantity", db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @hybrid_property
    def stock_quantity(self):
        return self._stock_quantity

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "unit": self.unit,
            "type": self.type,
            "hsn_code": self.hsn_code,
            "unit_price_cents": self.unit_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "stock_quantity": self.stock_quantity,
            "reorder_level": self.reorder_level,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class MenuItem(db.Model):
    """
    A dish on the menu.

    A menu item either has a recipe (ingredients consumed per portion) or is
    mapped onto a single sellable product (bottled drinks etc.). tax_rate_bps
    NULL means "use the company default rate".
    """
    __tablename__ = "menu_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(128), nullable=True)
    description = db.Column(db.Text, nullable=True)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    is_available = db.Column(db.Boolean, nullable=False, default=True)
    preparation_time = db.Column(db.Integer, nullable=False, default=15)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "product_id": self.product_id,
            "is_available": self.is_available,
            "ingredients": [i.to_dict() for i in self.ingredients],
        }


class MenuItemIngredient(db.Model):
    """Recipe line: quantity_required of product per portion of the menu item."""
    __tablename__ = "menu_item_ingredients"
    __table_args__ = (
        db.CheckConstraint("quantity_required > 0", name="ck_menu_ingredients_qty"),
        db.UniqueConstraint("menu_item_id", "product_id", name="uq_menu_ingredients_item_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    menu_item_id = db.Column(
        db.Integer, db.ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = db.Column(
        db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity_required = db.Column(db.Integer, nullable=False)

    menu_item = db.relationship(
        "MenuItem",
        backref=db.backref(
            "ingredients", lazy=True, cascade="all, delete-orphan", order_by="MenuItemIngredient.id"
        ),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "menu_item_id": self.menu_item_id,
            "product_id": self.product_id,
            "quantity_required": self.quantity_required,
        }


class Customer(db.Model):
    """Billing customer. `state` drives the CGST/SGST vs IGST split."""
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_phone", "phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)
    gstin = db.Column(db.String(32), nullable=True)
    state = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "gstin": self.gstin,
            "state": self.state,
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact_person = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)
    gstin = db.Column(db.String(32), nullable=True)
    state = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "gstin": self.gstin,
            "state": self.state,
        }


class PaymentMethod(db.Model):
    """Tender types (Cash, UPI, Card, ...). Seeded by `flask system init`."""
    __tablename__ = "payment_methods"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "is_active": self.is_active}


class CompanyProfile(db.Model):
    """
    Seller identity and tax configuration (single row).

    default_tax_rate_bps applies to menu items without their own rate.
    enable_tax=False bills everything tax-free.
    """
    __tablename__ = "company_profile"
    __table_args__ = (
        db.CheckConstraint(
            "default_tax_rate_bps >= 0 AND default_tax_rate_bps <= 10000",
            name="ck_company_profile_tax_rate",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.Text, nullable=True)
    state = db.Column(db.String(64), nullable=True)
    gstin = db.Column(db.String(32), nullable=True)
    default_tax_rate_bps = db.Column(db.Integer, nullable=False, default=500)
    tax_name = db.Column(db.String(32), nullable=False, default="GST")
    enable_tax = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_name": self.company_name,
            "state": self.state,
            "gstin": self.gstin,
            "default_tax_rate_bps": self.default_tax_rate_bps,
            "tax_name": self.tax_name,
            "enable_tax": self.enable_tax,
            "updated_at": to_utc_z(self.updated_at),
        }
