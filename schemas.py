from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import CategoryType, MemberRole, TransactionStatus, TransactionType


# Inputs carry types only; length, format and range rules are enforced by
# the services so that every caller gets the same error kinds.


class FamilyIn(BaseModel):
    name: str


class MemberIn(BaseModel):
    name: str
    role: MemberRole = MemberRole.member
    phone: Optional[str] = None
    email: Optional[str] = None


class MemberRoleIn(BaseModel):
    role: MemberRole


class CategoryIn(BaseModel):
    name: str
    type: CategoryType
    parent_id: Optional[int] = None
    sort_order: int = 0


class TagIn(BaseModel):
    name: str
    type: str
    color: Optional[str] = None


class TransactionIn(BaseModel):
    member_id: int
    amount: Decimal
    type: TransactionType
    category_id: int
    transaction_time: datetime
    note: Optional[str] = None
    payment_method: Optional[str] = None


class TransactionTagIn(BaseModel):
    tag_id: int


class MemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    family_id: int
    name: str
    role: MemberRole
    phone: Optional[str]
    email: Optional[str]
    status: int
    created_at: datetime


class FamilyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    created_at: datetime
    updated_at: datetime
    members: list[MemberOut] = Field(default_factory=list)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: CategoryType
    parent_id: Optional[int]
    path: str
    level: int
    sort_order: int
    is_deleted: bool
    created_at: datetime


class CategoryNodeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: CategoryType
    parent_id: Optional[int]
    path: str
    level: int
    sort_order: int
    children: list["CategoryNodeOut"] = Field(default_factory=list)


class CategoryPathOut(BaseModel):
    id: int
    path: str


class TagOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    family_id: int
    name: str
    type: str
    color: Optional[str]
    is_active: bool
    created_at: datetime


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    family_id: int
    member_id: int
    amount: Decimal
    type: TransactionType
    category_id: int
    transaction_time: datetime
    note: Optional[str]
    payment_method: Optional[str]
    status: TransactionStatus
    created_at: datetime
    updated_at: datetime
    tags: list[TagOut] = Field(default_factory=list)


class TransactionPage(BaseModel):
    data: list[TransactionOut]
    total: int
    page: int
    size: int


class SummaryOut(BaseModel):
    start: datetime
    end: datetime
    group_by: str
    totals: dict[str, Decimal]
