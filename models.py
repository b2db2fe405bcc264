from datetime import datetime
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


# Categories share the income/expense enumeration with transactions.
CategoryType = TransactionType


class TransactionStatus(str, Enum):
    valid = "valid"
    deleted = "deleted"
    # Reserved: nothing transitions into or out of it yet.
    pending = "pending"


class MemberRole(str, Enum):
    admin = "admin"
    member = "member"
    viewer = "viewer"


class MemberStatus(IntEnum):
    removed = 0
    active = 1


def _enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda cls: [member.value for member in cls],
    )


class Family(Base):
    __tablename__ = "families"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    members: Mapped[list["Member"]] = relationship(
        "Member", back_populates="family", order_by="Member.id"
    )
    tags: Mapped[list["Tag"]] = relationship(
        "Tag", back_populates="family", cascade="all, delete-orphan"
    )


class Member(Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(
        ForeignKey("families.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    role: Mapped[MemberRole] = mapped_column(
        _enum(MemberRole, "memberrole"), nullable=False, default=MemberRole.member
    )
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    email: Mapped[Optional[str]] = mapped_column(String(100))
    status: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=MemberStatus.active.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    family: Mapped["Family"] = relationship("Family", back_populates="members")

    @hybrid_property
    def visible(self) -> bool:
        return self.status == MemberStatus.active.value


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CategoryType] = mapped_column(
        _enum(CategoryType, "categorytype"), nullable=False
    )
    parent_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    path: Mapped[str] = mapped_column(String(500), nullable=False, default="/")
    level: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    parent: Mapped[Optional["Category"]] = relationship(
        "Category", remote_side="Category.id", back_populates="children"
    )
    children: Mapped[list["Category"]] = relationship(
        "Category", back_populates="parent", order_by="Category.sort_order"
    )

    __table_args__ = (
        Index("ix_categories_path", "path"),
        Index("ix_categories_type_parent", "type", "parent_id"),
        CheckConstraint("level >= 1", name="ck_categories_level_positive"),
    )

    @hybrid_property
    def visible(self) -> bool:
        return not self.is_deleted

    @visible.inplace.expression
    @classmethod
    def _visible_expression(cls):
        return cls.is_deleted.is_(False)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(
        ForeignKey("families.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(7))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    family: Mapped["Family"] = relationship("Family", back_populates="tags")

    @hybrid_property
    def visible(self) -> bool:
        return self.is_active

    @visible.inplace.expression
    @classmethod
    def _visible_expression(cls):
        return cls.is_active.is_(True)


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("families.id"), nullable=False)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        _enum(TransactionType, "transactiontype"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    transaction_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    status: Mapped[TransactionStatus] = mapped_column(
        _enum(TransactionStatus, "transactionstatus"),
        nullable=False,
        default=TransactionStatus.valid,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    family: Mapped["Family"] = relationship("Family")
    member: Mapped["Member"] = relationship("Member")
    category: Mapped["Category"] = relationship("Category")
    tags: Mapped[list["Tag"]] = relationship(
        "Tag", secondary="transaction_tags", viewonly=True, order_by="Tag.id"
    )

    __table_args__ = (
        Index("ix_transactions_family_time", "family_id", "transaction_time"),
        Index("ix_transactions_family_status_type", "family_id", "status", "type"),
        Index("ix_transactions_member", "member_id"),
        Index("ix_transactions_category", "category_id"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )

    @hybrid_property
    def visible(self) -> bool:
        return self.status != TransactionStatus.deleted

    @visible.inplace.expression
    @classmethod
    def _visible_expression(cls):
        return cls.status != TransactionStatus.deleted


class TransactionTag(Base):
    __tablename__ = "transaction_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id"), nullable=False, index=True
    )
    tag_id: Mapped[int] = mapped_column(ForeignKey("tags.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    transaction: Mapped["Transaction"] = relationship("Transaction")
    tag: Mapped["Tag"] = relationship("Tag")
