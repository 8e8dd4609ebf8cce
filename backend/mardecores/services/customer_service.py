# Overview: Customer directory used by order creation and credit account opening.

from __future__ import annotations

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer
from . import ledger_store


def _normalize_phone(phone: str | None) -> str | None:
    if not phone:
        return None
    digits = "".join(ch for ch in phone if ch.isdigit())
    return digits or None


def create_customer(name: str, phone: str | None = None, email: str | None = None) -> Customer:
    if not name or not name.strip():
        raise ValidationError("Customer name is required")

    email = email.strip().lower() if email else None
    if email and db.session.query(Customer).filter_by(email=email).first():
        raise ValidationError(f"Customer with email {email} already exists")

    customer = Customer(name=name.strip(), phone=_normalize_phone(phone), email=email)
    with ledger_store.atomic():
        ledger_store.save_customer(customer)
    return customer


def find_customer(*, phone: str | None = None, email: str | None = None) -> Customer | None:
    """Match by email first, then by phone digits."""
    if email:
        found = db.session.query(Customer).filter_by(email=email.strip().lower()).first()
        if found:
            return found
    digits = _normalize_phone(phone)
    if digits:
        return db.session.query(Customer).filter_by(phone=digits).order_by(Customer.id).first()
    return None


def resolve_customer(customer_id: int | None = None, customer: dict | None = None) -> Customer:
    """
    Existing customer by id, or find-or-stage one from identity data.

    Staged customers are flushed, not committed; they commit with the order.
    """
    if customer_id is not None:
        return ledger_store.get_customer(customer_id)
    if not customer:
        raise NotFoundError("customer_id or customer data is required")

    existing = find_customer(phone=customer.get("phone"), email=customer.get("email"))
    if existing:
        return existing

    name = (customer.get("name") or "").strip()
    if not name:
        raise ValidationError("Customer name is required")
    email = customer.get("email")
    staged = Customer(
        name=name,
        phone=_normalize_phone(customer.get("phone")),
        email=email.strip().lower() if email else None,
    )
    return ledger_store.save_customer(staged)


def list_customers(search: str | None = None) -> list[Customer]:
    query = db.session.query(Customer)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(Customer.name.ilike(like), Customer.phone.ilike(like)))
    return query.order_by(Customer.name).all()
