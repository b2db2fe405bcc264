from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy.orm import Session

from category_tree import (
    CategoryNode,
    breadcrumb,
    build_tree,
    child_level,
    child_path,
    normalize_parent_id,
    parse_path,
)
from errors import (
    ConflictError,
    IntegrityMismatchError,
    NotFoundError,
    StoreError,
)
from models import (
    Category,
    CategoryType,
    Family,
    Member,
    MemberRole,
    MemberStatus,
    Tag,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from periods import Granularity, bucket_expression, resolve_granularity, resolve_window
from repositories import RecordStore, TransactionQuery
from schemas import CategoryIn, FamilyIn, MemberIn, TagIn, TransactionIn
from validation import (
    CENT,
    ReferentialValidator,
    ScopeKind,
    coerce_enum,
    optional_text,
    require_text,
    validate_amount,
    validate_color,
    validate_email,
    validate_transaction_time,
    validate_transaction_type,
)

logger = logging.getLogger(__name__)


class _Service:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.store = RecordStore(session)
        self.validator = ReferentialValidator(self.store)

    def _require_family(self, family_id: Optional[int]) -> None:
        if not self.validator.family_is_active(family_id):
            raise NotFoundError("Family not found")


class FamilyService(_Service):
    def create(self, data: FamilyIn) -> Family:
        name = require_text(data.name, "Family name", 100)
        if not self.validator.name_unique_in_scope(ScopeKind.family, name):
            raise ConflictError("Family name already exists")

        family = self.store.families.create(Family(name=name))
        self.store.commit("create family")
        logger.info("family_created: id=%s", family.id)
        return family

    def get(self, family_id: int) -> Family:
        family = self.store.families.get(family_id, with_relations=True)
        if family is None:
            raise NotFoundError("Family not found")
        return family

    def list_all(self) -> list[Family]:
        return self.store.families.list(with_relations=True)

    def update(self, family_id: int, data: FamilyIn) -> Family:
        family = self.get(family_id)
        name = require_text(data.name, "Family name", 100)
        if not self.validator.name_unique_in_scope(
            ScopeKind.family, name, exclude_id=family.id
        ):
            raise ConflictError("Family name is used by another family")

        self.store.families.update(family, name=name)
        self.store.commit("update family")
        return family

    def delete(self, family_id: int) -> None:
        family = self.get(family_id)
        if self.store.members.exists(Member.family_id == family.id):
            raise ConflictError("Cannot delete a family that still has members")

        self.store.families.hard_delete(family.id)
        self.store.commit("delete family")
        logger.info("family_deleted: id=%s", family_id)

    def exists(self, family_id: int) -> bool:
        return self.validator.family_is_active(family_id)


class MemberService(_Service):
    def _clean(self, data: MemberIn) -> dict[str, Any]:
        return {
            "name": require_text(data.name, "Member name", 50),
            "role": coerce_enum(MemberRole, data.role, "member role"),
            "phone": optional_text(data.phone, "Phone", 20),
            "email": validate_email(data.email),
        }

    def _ensure_contact_unique(
        self, fields: dict[str, Any], exclude_id: Optional[int] = None
    ) -> None:
        if fields["email"] and not self.validator.name_unique_in_scope(
            ScopeKind.member_email, fields["email"], exclude_id=exclude_id
        ):
            raise ConflictError("Email is already used by another member")
        if fields["phone"] and not self.validator.name_unique_in_scope(
            ScopeKind.member_phone, fields["phone"], exclude_id=exclude_id
        ):
            raise ConflictError("Phone is already used by another member")

    def create(self, family_id: int, data: MemberIn) -> Member:
        fields = self._clean(data)
        self._require_family(family_id)
        self._ensure_contact_unique(fields)

        member = self.store.members.create(
            Member(family_id=family_id, status=MemberStatus.active.value, **fields)
        )
        self.store.commit("create member")
        logger.info("member_created: id=%s family_id=%s", member.id, family_id)
        return member

    def get(self, member_id: int, *, include_removed: bool = False) -> Member:
        member = self.store.members.get(member_id, with_relations=True)
        if member is None or (not include_removed and not member.visible):
            raise NotFoundError("Member not found")
        return member

    def list_by_family(
        self, family_id: int, *, include_removed: bool = False
    ) -> list[Member]:
        self._require_family(family_id)
        criteria = [Member.family_id == family_id]
        if not include_removed:
            criteria.append(Member.visible)
        return self.store.members.list(*criteria)

    def list_active_by_family(self, family_id: int) -> list[Member]:
        return self.list_by_family(family_id, include_removed=False)

    def list_all(self) -> list[Member]:
        return self.store.members.list(Member.visible)

    def update(self, member_id: int, data: MemberIn) -> Member:
        member = self.get(member_id)
        fields = self._clean(data)
        self._ensure_contact_unique(fields, exclude_id=member.id)

        # Role changes go through change_role.
        self.store.members.update(
            member, name=fields["name"], phone=fields["phone"], email=fields["email"]
        )
        self.store.commit("update member")
        return member

    def change_role(self, member_id: int, role: MemberRole | str) -> Member:
        new_role = coerce_enum(MemberRole, role, "member role")
        member = self.get(member_id)
        self.store.members.update(member, role=new_role)
        self.store.commit("change member role")
        logger.info("member_role_changed: id=%s role=%s", member.id, new_role.value)
        return member

    def delete(self, member_id: int) -> None:
        member = self.get(member_id)
        self.store.members.soft_delete(member.id, "status", MemberStatus.removed.value)
        self.store.commit("remove member")
        logger.info("member_removed: id=%s", member_id)

    def exists(self, member_id: int) -> bool:
        member = self.store.members.get(member_id)
        return member is not None and member.visible


class CategoryService(_Service):
    """Keeps the category forest consistent.

    Every category stores its depth (``level``) and a materialized path of
    ancestor ids. Both are derived from the parent whenever a category is
    created or moved, and re-derived for the whole subtree on update.
    """

    def _clean(self, data: CategoryIn) -> tuple[str, CategoryType, Optional[int]]:
        name = require_text(data.name, "Category name", 100)
        category_type = coerce_enum(CategoryType, data.type, "category type")
        return name, category_type, normalize_parent_id(data.parent_id)

    def _parent_for(
        self, parent_id: Optional[int], category_type: CategoryType
    ) -> Optional[Category]:
        if parent_id is None:
            return None
        parent = self.store.categories.get(parent_id)
        if parent is None or not parent.visible:
            raise NotFoundError("Parent category not found")
        if parent.type != category_type:
            raise IntegrityMismatchError(
                "Category type must match its parent category type"
            )
        return parent

    def _ensure_no_cycle(self, category_id: int, parent_id: Optional[int]) -> None:
        if parent_id is None:
            return
        if parent_id == category_id:
            raise ConflictError("A category cannot be its own parent")

        seen: set[int] = set()
        current_id: Optional[int] = parent_id
        while current_id is not None and current_id not in seen:
            seen.add(current_id)
            ancestor = self.store.categories.get(current_id)
            if ancestor is None or not ancestor.visible:
                break
            if ancestor.id == category_id:
                raise ConflictError(
                    "A category cannot be moved under one of its descendants"
                )
            current_id = normalize_parent_id(ancestor.parent_id)

    def _has_active_children(self, category_id: int) -> bool:
        return self.store.categories.exists(
            Category.parent_id == category_id, Category.visible
        )

    def _rebuild_subtree(self, root: Category) -> None:
        queue = [root]
        while queue:
            node = queue.pop(0)
            for child in self.store.categories.list(Category.parent_id == node.id):
                self.store.categories.update(
                    child,
                    level=child_level(node.level),
                    path=child_path(node.path, child.id),
                )
                queue.append(child)

    def create(self, data: CategoryIn) -> Category:
        name, category_type, parent_id = self._clean(data)
        if not self.validator.name_unique_in_scope(
            ScopeKind.category, name, scope=(parent_id, category_type)
        ):
            raise ConflictError("Category name already exists")
        parent = self._parent_for(parent_id, category_type)

        category = self.store.categories.create(
            Category(
                name=name,
                type=category_type,
                parent_id=parent_id,
                sort_order=data.sort_order,
                is_deleted=False,
                level=child_level(parent.level if parent else None),
                path=parent.path if parent else "/",
            )
        )
        # The id exists only after the insert is flushed; both writes land
        # in the same commit.
        self.store.categories.update(
            category, path=child_path(parent.path if parent else None, category.id)
        )
        self.store.commit("create category")
        logger.info(
            "category_created: id=%s path=%s level=%s",
            category.id,
            category.path,
            category.level,
        )
        return category

    def get(self, category_id: int) -> Category:
        category = self.store.categories.get(category_id)
        if category is None or not category.visible:
            raise NotFoundError("Category not found")
        return category

    def list_by_type(self, category_type: CategoryType | str) -> list[Category]:
        wanted = coerce_enum(CategoryType, category_type, "category type")
        return self.store.categories.list(
            Category.type == wanted,
            Category.visible,
            order_by=(Category.level, Category.sort_order, Category.id),
        )

    def tree_by_type(self, category_type: CategoryType | str) -> list[CategoryNode]:
        return build_tree(self.list_by_type(category_type))

    def children_of(self, parent_id: Optional[int]) -> list[Category]:
        parent_id = normalize_parent_id(parent_id)
        if parent_id is None:
            criteria = [Category.parent_id.is_(None)]
        else:
            self.get(parent_id)
            criteria = [Category.parent_id == parent_id]
        return self.store.categories.list(
            *criteria,
            Category.visible,
            order_by=(Category.sort_order, Category.id),
        )

    def list_all(self) -> list[Category]:
        return self.store.categories.list(
            Category.visible,
            order_by=(Category.type, Category.level, Category.sort_order, Category.id),
        )

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        name, category_type, parent_id = self._clean(data)
        if not self.validator.name_unique_in_scope(
            ScopeKind.category,
            name,
            scope=(parent_id, category_type),
            exclude_id=category.id,
        ):
            raise ConflictError("Category name already exists")
        self._ensure_no_cycle(category.id, parent_id)
        parent = self._parent_for(parent_id, category_type)
        if category_type != category.type:
            if self._has_active_children(category.id):
                raise IntegrityMismatchError(
                    "Cannot change the type of a category that has subcategories"
                )
            if self.store.transactions.exists(
                Transaction.category_id == category.id, Transaction.visible
            ):
                raise IntegrityMismatchError(
                    "Cannot change the type of a category used by transactions"
                )

        self.store.categories.update(
            category,
            name=name,
            type=category_type,
            parent_id=parent_id,
            sort_order=data.sort_order,
            level=child_level(parent.level if parent else None),
            path=child_path(parent.path if parent else None, category.id),
        )
        self._rebuild_subtree(category)
        self.store.commit("update category")
        logger.info("category_updated: id=%s path=%s", category.id, category.path)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        if self._has_active_children(category.id):
            raise ConflictError("Cannot delete a category that has subcategories")

        self.store.categories.soft_delete(category.id, "is_deleted", True)
        self.store.commit("delete category")
        logger.info("category_deleted: id=%s", category_id)

    def exists(self, category_id: int) -> bool:
        category = self.store.categories.get(category_id)
        return category is not None and category.visible

    def full_path(self, category_id: int) -> str:
        """Human-readable breadcrumb such as ``Food > Groceries > Snacks``.

        Ancestors that have since been deleted are left out.
        """
        category = self.get(category_id)
        try:
            ancestor_ids = parse_path(category.path)
        except ValueError as exc:
            raise StoreError(str(exc)) from exc

        names: list[str] = []
        for ancestor_id in ancestor_ids:
            ancestor = self.store.categories.get(ancestor_id)
            if ancestor is not None and ancestor.visible:
                names.append(ancestor.name)
        return breadcrumb(names)


class TagService(_Service):
    def _clean(self, data: TagIn) -> dict[str, Any]:
        return {
            "name": require_text(data.name, "Tag name", 100),
            "type": require_text(data.type, "Tag type", 50),
            "color": validate_color(data.color),
        }

    def create(self, family_id: int, data: TagIn) -> Tag:
        fields = self._clean(data)
        self._require_family(family_id)
        if not self.validator.name_unique_in_scope(
            ScopeKind.tag, fields["name"], scope=family_id
        ):
            raise ConflictError("Tag already exists")

        tag = self.store.tags.create(Tag(family_id=family_id, is_active=True, **fields))
        self.store.commit("create tag")
        logger.info("tag_created: id=%s family_id=%s", tag.id, family_id)
        return tag

    def get(self, tag_id: int) -> Tag:
        tag = self.store.tags.get(tag_id)
        if tag is None or not tag.visible:
            raise NotFoundError("Tag not found")
        return tag

    def list_by_family(self, family_id: int) -> list[Tag]:
        self._require_family(family_id)
        return self.store.tags.list(
            Tag.family_id == family_id, Tag.visible, order_by=(Tag.name, Tag.id)
        )

    def list_by_type(self, family_id: int, tag_type: str) -> list[Tag]:
        self._require_family(family_id)
        return self.store.tags.list(
            Tag.family_id == family_id,
            Tag.type == (tag_type or "").strip(),
            Tag.visible,
            order_by=(Tag.name, Tag.id),
        )

    def list_all(self) -> list[Tag]:
        return self.store.tags.list(Tag.visible, order_by=(Tag.family_id, Tag.name))

    def update(self, tag_id: int, data: TagIn) -> Tag:
        tag = self.get(tag_id)
        fields = self._clean(data)
        if not self.validator.name_unique_in_scope(
            ScopeKind.tag, fields["name"], scope=tag.family_id, exclude_id=tag.id
        ):
            raise ConflictError("Tag with this name already exists")

        self.store.tags.update(tag, **fields)
        self.store.commit("update tag")
        return tag

    def delete(self, tag_id: int) -> None:
        tag = self.get(tag_id)
        if self.store.transactions.tag_in_use(tag.id):
            raise ConflictError("Tag is used by transactions and cannot be deleted")

        self.store.tags.soft_delete(tag.id, "is_active", False)
        self.store.commit("delete tag")
        logger.info("tag_deleted: id=%s", tag_id)

    def exists(self, tag_id: int) -> bool:
        tag = self.store.tags.get(tag_id)
        return tag is not None and tag.visible

    def transactions_for(self, tag_id: int) -> list[Transaction]:
        tag = self.get(tag_id)
        return self.store.transactions.with_tag(tag.id)


class TransactionService(_Service):
    def _clean(self, data: TransactionIn) -> dict[str, Any]:
        return {
            "amount": validate_amount(data.amount),
            "type": validate_transaction_type(data.type),
            "transaction_time": validate_transaction_time(data.transaction_time),
            "note": optional_text(data.note, "Note", 1000),
            "payment_method": optional_text(data.payment_method, "Payment method", 50),
        }

    def _check_references(
        self,
        family_id: int,
        member_id: int,
        category_id: int,
        transaction_type: TransactionType,
    ) -> None:
        self._require_family(family_id)

        if not self.validator.member_belongs_to_active_family(member_id, family_id):
            member = self.store.members.get(member_id)
            if member is None or not member.visible:
                raise NotFoundError("Member not found")
            raise IntegrityMismatchError("Member does not belong to this family")

        if not self.validator.category_is_active_and_type(
            category_id, transaction_type
        ):
            category = self.store.categories.get(category_id)
            if category is None or not category.visible:
                raise NotFoundError("Category not found")
            raise IntegrityMismatchError("Category type mismatch")

    def _require_visible(self, transaction_id: int) -> Transaction:
        txn = self.store.transactions.get(transaction_id)
        if txn is None or not txn.visible:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, family_id: int, data: TransactionIn) -> Transaction:
        fields = self._clean(data)
        self._check_references(family_id, data.member_id, data.category_id, fields["type"])

        txn = self.store.transactions.create(
            Transaction(
                family_id=family_id,
                member_id=data.member_id,
                category_id=data.category_id,
                status=TransactionStatus.valid,
                **fields,
            )
        )
        self.store.commit("create transaction")
        logger.info(
            "transaction_created: id=%s family_id=%s amount=%s type=%s",
            txn.id,
            family_id,
            txn.amount,
            txn.type.value,
        )
        return txn

    def get(self, transaction_id: int, *, include_deleted: bool = False) -> Transaction:
        txn = self.store.transactions.get(transaction_id, with_relations=True)
        if txn is None or (not include_deleted and not txn.visible):
            raise NotFoundError("Transaction not found")
        return txn

    def list_by_family(
        self,
        family_id: int,
        query: Optional[TransactionQuery] = None,
        page: int = 1,
        size: int = 20,
    ) -> tuple[list[Transaction], int]:
        self._require_family(family_id)
        query = replace(
            query or TransactionQuery(),
            family_id=family_id,
            status=TransactionStatus.valid,
        )
        page = max(page, 1)
        return self.store.transactions.find_matching(
            query, offset=(page - 1) * size, limit=size
        )

    def list_by_time_range(
        self,
        family_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        query: Optional[TransactionQuery] = None,
    ) -> list[Transaction]:
        self._require_family(family_id)
        window = resolve_window(start, end)
        query = replace(
            query or TransactionQuery(),
            family_id=family_id,
            status=TransactionStatus.valid,
            start=window.start,
            end=window.end,
        )
        items, _ = self.store.transactions.find_matching(query)
        return items

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self._require_visible(transaction_id)
        fields = self._clean(data)
        self._check_references(
            txn.family_id, data.member_id, data.category_id, fields["type"]
        )

        self.store.transactions.update(
            txn, member_id=data.member_id, category_id=data.category_id, **fields
        )
        self.store.commit("update transaction")
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self._require_visible(transaction_id)
        self.store.transactions.soft_delete(
            txn.id, "status", TransactionStatus.deleted
        )
        self.store.commit("delete transaction")
        logger.info("transaction_deleted: id=%s", transaction_id)

    def add_tag(self, transaction_id: int, tag_id: int) -> None:
        txn = self._require_visible(transaction_id)
        tag = self.store.tags.get(tag_id)
        if tag is None or not tag.visible:
            raise NotFoundError("Tag not found")
        if tag.family_id != txn.family_id:
            raise IntegrityMismatchError("Tag belongs to a different family")
        if self.store.transactions.tag_link(txn.id, tag.id) is not None:
            raise ConflictError("Tag is already attached to this transaction")

        self.store.transactions.link_tag(txn.id, tag.id)
        self.store.commit("add transaction tag")
        logger.info("transaction_tag_added: transaction_id=%s tag_id=%s", txn.id, tag.id)

    def remove_tag(self, transaction_id: int, tag_id: int) -> None:
        txn = self._require_visible(transaction_id)
        if self.store.transactions.tag_link(txn.id, tag_id) is None:
            raise NotFoundError("Tag is not attached to this transaction")

        self.store.transactions.unlink_tag(txn.id, tag_id)
        self.store.commit("remove transaction tag")
        logger.info(
            "transaction_tag_removed: transaction_id=%s tag_id=%s", txn.id, tag_id
        )

    def tags_for(self, transaction_id: int) -> list[Tag]:
        txn = self._require_visible(transaction_id)
        return self.store.transactions.tags_for(txn.id)


class SummaryService(_Service):
    """Grouped sums over valid transactions inside an inclusive window."""

    def by_category(
        self,
        family_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        transaction_type: Optional[TransactionType | str] = None,
    ) -> dict[str, Decimal]:
        self._require_family(family_id)
        window = resolve_window(start, end)
        wanted = validate_transaction_type(transaction_type or TransactionType.expense)
        query = TransactionQuery(
            family_id=family_id, type=wanted, start=window.start, end=window.end
        )
        rows = self.store.transactions.grouped_sum(
            Category.name,
            Transaction.amount,
            *query.criteria(),
            join=(Category, Transaction.category_id == Category.id),
        )
        return self._collect(rows)

    def by_time(
        self,
        family_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        granularity: Optional[Granularity | str] = None,
        transaction_type: Optional[TransactionType | str] = None,
    ) -> dict[str, Decimal]:
        """Sum per day/month/year bucket; unknown granularities use month.

        Income and expense are summed together unless ``transaction_type``
        narrows the set.
        """
        self._require_family(family_id)
        window = resolve_window(start, end)
        bucket = bucket_expression(
            Transaction.transaction_time,
            resolve_granularity(granularity),
            self.session.get_bind().dialect.name,
        )
        query = TransactionQuery(
            family_id=family_id,
            type=validate_transaction_type(transaction_type) if transaction_type else None,
            start=window.start,
            end=window.end,
        )
        rows = self.store.transactions.grouped_sum(
            bucket, Transaction.amount, *query.criteria()
        )
        return self._collect(rows)

    def _collect(self, rows: list[Any]) -> dict[str, Decimal]:
        totals: dict[str, Decimal] = {}
        for row in rows:
            # A bad row is skipped so one corrupt record cannot hide the rest.
            if row.bucket is None or row.total is None:
                logger.warning("summary_row_skipped: row=%r", tuple(row))
                continue
            try:
                total = Decimal(str(row.total)).quantize(CENT)
            except (InvalidOperation, ValueError) as exc:
                logger.warning("summary_row_skipped: row=%r error=%s", tuple(row), exc)
                continue
            totals[str(row.bucket)] = total
        return totals
