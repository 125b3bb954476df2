# Overview: Minimal tenant and product provisioning used by the operator CLI.

from __future__ import annotations

from ..extensions import db
from ..models import Organization, Product
from ..validation import ValidationError, parse_int, parse_amount_cents


def create_organization(name: str, code: str | None = None) -> Organization:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Organization name is required")
    if code and db.session.query(Organization).filter_by(code=code).first():
        raise ValidationError("Organization code already exists", details={"code": code})

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()
    return org


def create_product(
    *,
    org_id: int,
    name: str,
    price_cents,
    stock_quantity=0,
    sku: str | None = None,
    unit: str = "item",
) -> Product:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Product name is required")

    price = parse_amount_cents(price_cents, "price_cents")
    if price < 0:
        raise ValidationError("price_cents cannot be negative")
    quantity = parse_int(stock_quantity, "stock_quantity")
    if quantity < 0:
        raise ValidationError("stock_quantity cannot be negative")

    if sku and db.session.query(Product).filter_by(org_id=org_id, sku=sku).first():
        raise ValidationError("SKU already exists in this organization", details={"sku": sku})

    product = Product(
        org_id=org_id,
        sku=sku,
        name=name,
        price_cents=price,
        stock_quantity=quantity,
        unit=unit or "item",
    )
    db.session.add(product)
    db.session.commit()
    return product
