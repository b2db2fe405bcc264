"""Referential checks and field rules shared by the services.

``ReferentialValidator`` only reads: it answers existence, eligibility and
uniqueness questions against the current store state and never mutates.
Each call re-reads the store, so two concurrent writers can both pass a
uniqueness check before either commits.
"""

from __future__ import annotations

import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, TypeVar

from errors import ValidationError
from models import Category, CategoryType, Member, Tag, TransactionType
from periods import local_now, to_local_naive
from repositories import RecordStore

EnumT = TypeVar("EnumT", bound=Enum)

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("9999999999.99")
COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


class ScopeKind(str, Enum):
    family = "family"
    member_email = "member_email"
    member_phone = "member_phone"
    tag = "tag"
    category = "category"


class ReferentialValidator:
    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def family_is_active(self, family_id: Optional[int]) -> bool:
        return self.store.families.get(family_id) is not None

    def member_belongs_to_active_family(
        self, member_id: Optional[int], family_id: Optional[int]
    ) -> bool:
        if not family_id:
            return False
        member = self.store.members.get(member_id)
        return member is not None and member.visible and member.family_id == family_id

    def category_is_active_and_type(
        self, category_id: Optional[int], expected_type: CategoryType
    ) -> bool:
        category = self.store.categories.get(category_id)
        return (
            category is not None
            and category.visible
            and category.type == expected_type
        )

    def name_unique_in_scope(
        self,
        kind: ScopeKind,
        name: str,
        scope: Any = None,
        exclude_id: Optional[int] = None,
    ) -> bool:
        """True when no other record in the scope uses ``name`` (case-insensitive).

        Scopes: family names and member email/phone are global, tags are
        scoped by family id, categories by ``(parent_id, type)``.
        """
        # Compared in Python: SQL lower() is ASCII-only on SQLite.
        needle = name.strip().casefold()
        if kind is ScopeKind.family:
            repo, field, criteria = self.store.families, "name", []
        elif kind is ScopeKind.member_email:
            repo, field = self.store.members, "email"
            criteria = [Member.email.is_not(None)]
        elif kind is ScopeKind.member_phone:
            repo, field = self.store.members, "phone"
            criteria = [Member.phone.is_not(None)]
        elif kind is ScopeKind.tag:
            repo, field = self.store.tags, "name"
            criteria = [Tag.family_id == scope, Tag.visible]
        elif kind is ScopeKind.category:
            parent_id, category_type = scope
            repo, field = self.store.categories, "name"
            criteria = [
                Category.type == category_type,
                Category.visible,
                Category.parent_id.is_(None)
                if parent_id is None
                else Category.parent_id == parent_id,
            ]
        else:  # pragma: no cover
            raise ValueError(f"Unknown uniqueness scope: {kind}")

        if exclude_id is not None:
            criteria.append(repo.model.id != exclude_id)
        return not any(
            (getattr(candidate, field) or "").strip().casefold() == needle
            for candidate in repo.list(*criteria)
        )


def coerce_enum(enum_cls: type[EnumT], value: Any, label: str) -> EnumT:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(str(member.value) for member in enum_cls)
        raise ValidationError(f"Invalid {label}; expected one of: {allowed}") from exc


def require_text(value: Optional[str], label: str, max_length: int) -> str:
    clean = (value or "").strip()
    if not clean:
        raise ValidationError(f"{label} cannot be empty")
    if len(clean) > max_length:
        raise ValidationError(f"{label} must be at most {max_length} characters")
    return clean


def optional_text(value: Optional[str], label: str, max_length: int) -> Optional[str]:
    clean = (value or "").strip()
    if not clean:
        return None
    if len(clean) > max_length:
        raise ValidationError(f"{label} must be at most {max_length} characters")
    return clean


def validate_email(value: Optional[str]) -> Optional[str]:
    email = optional_text(value, "Email", 100)
    if email is not None and "@" not in email:
        raise ValidationError("Email address is malformed")
    return email


def validate_color(value: Optional[str]) -> Optional[str]:
    color = (value or "").strip()
    if not color:
        return None
    if not COLOR_PATTERN.match(color):
        raise ValidationError("Color must look like #RRGGBB")
    return color


def validate_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError("Amount must be a number") from exc
    if not amount.is_finite():
        raise ValidationError("Amount must be a number")
    if amount > MAX_AMOUNT:
        raise ValidationError("Amount is too large")
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise ValidationError("Amount must be greater than 0")
    return amount


def validate_transaction_time(
    value: Optional[datetime], now: Optional[datetime] = None
) -> datetime:
    if value is None:
        raise ValidationError("Transaction time is required")
    moment = to_local_naive(value)
    if moment > (now or local_now()):
        raise ValidationError("Transaction time cannot be in the future")
    return moment


def validate_transaction_type(value: Any) -> TransactionType:
    return coerce_enum(TransactionType, value, "transaction type")
