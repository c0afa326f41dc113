from __future__ import annotations

from ..extensions import db
from gasdepot.money import format_cents
from gasdepot.time_utils import to_utc_z


class CylinderType(db.Model):
    """
    Gas cylinder size/brand sold by the depot.

    PRICE CLASSES (cents):
    - price_new_cents: customer buys the cylinder shell with the gas
    - price_exchange_cents: customer hands back an empty and gets a full one
    - price_loan_cents: cylinder is loaned; falls back to the new price when unset
    """
    __tablename__ = "cylinder_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    price_new_cents = db.Column(db.Integer, nullable=False)
    price_exchange_cents = db.Column(db.Integer, nullable=False)
    price_loan_cents = db.Column(db.Integer, nullable=True)

    is_available = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<CylinderType id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price_new_cents": self.price_new_cents,
            "price_new": format_cents(self.price_new_cents),
            "price_exchange_cents": self.price_exchange_cents,
            "price_exchange": format_cents(self.price_exchange_cents),
            "price_loan_cents": self.price_loan_cents,
            "price_loan": format_cents(self.price_loan_cents),
            "is_available": self.is_available,
            "updated_at": to_utc_z(self.updated_at),
        }


class OtherProduct(db.Model):
    """Accessories sold alongside cylinders (valves, hoses, regulators)."""
    __tablename__ = "other_products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price_cents = db.Column(db.Integer, nullable=False)
    stock_unit = db.Column(db.String(32), nullable=False, default="unidad")
    is_available = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<OtherProduct id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "price": format_cents(self.price_cents),
            "stock_unit": self.stock_unit,
            "is_available": self.is_available,
            "updated_at": to_utc_z(self.updated_at),
        }


class CustomerSpecificPrice(db.Model):
    """Negotiated exchange price for one customer and cylinder type."""
    __tablename__ = "customer_specific_prices"
    __table_args__ = (
        db.UniqueConstraint("customer_user_id", "cylinder_type_id", name="uq_customer_price_cylinder"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_user_id = db.Column(db.Integer, db.ForeignKey("customers.user_id"), nullable=False, index=True)
    cylinder_type_id = db.Column(db.Integer, db.ForeignKey("cylinder_types.id"), nullable=False)
    price_exchange_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cylinder_type = db.relationship("CylinderType")
    customer = db.relationship("Customer", backref=db.backref("special_prices", lazy=True))

    def to_dict(self) -> dict:
        return {
            "customer_user_id": self.customer_user_id,
            "cylinder_type_id": self.cylinder_type_id,
            "price_exchange_cents": self.price_exchange_cents,
            "price_exchange": format_cents(self.price_exchange_cents),
        }
