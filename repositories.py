"""SQLAlchemy-backed record store.

One ``Repository`` per entity kind, all sharing the caller's session.
Every store failure is rolled back and re-raised as ``StoreError`` naming
the operation that failed.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Iterator, Optional, Sequence, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from database import Base
from errors import StoreError
from models import (
    Category,
    Family,
    Member,
    Tag,
    Transaction,
    TransactionStatus,
    TransactionTag,
    TransactionType,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


@contextmanager
def store_operation(session: Session, operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("store_error: operation=%r error=%s", operation, exc)
        raise StoreError(f"{operation} failed: {exc}") from exc


@dataclass
class TransactionQuery:
    """Typed filter for transaction listings and sums."""

    family_id: Optional[int] = None
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    member_id: Optional[int] = None
    payment_method: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: Optional[TransactionStatus] = TransactionStatus.valid

    def criteria(self) -> list[Any]:
        clauses: list[Any] = []
        if self.family_id is not None:
            clauses.append(Transaction.family_id == self.family_id)
        if self.status is not None:
            clauses.append(Transaction.status == self.status)
        if self.type is not None:
            clauses.append(Transaction.type == self.type)
        if self.category_id is not None:
            clauses.append(Transaction.category_id == self.category_id)
        if self.member_id is not None:
            clauses.append(Transaction.member_id == self.member_id)
        if self.payment_method:
            clauses.append(Transaction.payment_method == self.payment_method)
        if self.start is not None:
            clauses.append(Transaction.transaction_time >= self.start)
        if self.end is not None:
            clauses.append(Transaction.transaction_time <= self.end)
        return clauses


class Repository(Generic[ModelT]):
    def __init__(
        self, session: Session, model: type[ModelT], relations: Sequence[str] = ()
    ) -> None:
        self.session = session
        self.model = model
        self.relations = tuple(relations)
        self.label = model.__tablename__

    def _with_relations(self, stmt):
        for name in self.relations:
            stmt = stmt.options(joinedload(getattr(self.model, name)))
        return stmt

    def create(self, entity: ModelT) -> ModelT:
        with store_operation(self.session, f"create {self.label}"):
            self.session.add(entity)
            self.session.flush()
        return entity

    def get(self, entity_id: Optional[int], with_relations: bool = False) -> Optional[ModelT]:
        if not entity_id:
            return None
        with store_operation(self.session, f"get {self.label} {entity_id}"):
            if not with_relations:
                return self.session.get(self.model, entity_id)
            stmt = self._with_relations(
                select(self.model).where(self.model.id == entity_id)
            )
            return self.session.scalars(stmt).unique().first()

    def list(
        self,
        *criteria: Any,
        order_by: Sequence[Any] = (),
        with_relations: bool = False,
    ) -> list[ModelT]:
        items, _ = self.find(
            *criteria, order_by=order_by, with_relations=with_relations, count=False
        )
        return items

    def find(
        self,
        *criteria: Any,
        order_by: Sequence[Any] = (),
        offset: int = 0,
        limit: Optional[int] = None,
        with_relations: bool = False,
        count: bool = True,
    ) -> tuple[list[ModelT], int]:
        stmt = select(self.model).where(*criteria)
        with store_operation(self.session, f"find {self.label}"):
            total = -1
            if count:
                total = int(
                    self.session.scalar(
                        select(func.count()).select_from(stmt.subquery())
                    )
                    or 0
                )
            stmt = stmt.order_by(*(order_by or (self.model.id,)))
            if offset:
                stmt = stmt.offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            if with_relations:
                stmt = self._with_relations(stmt)
            items = list(self.session.scalars(stmt).unique().all())
        if not count:
            total = len(items)
        return items, total

    def exists(self, *criteria: Any) -> bool:
        stmt = select(self.model.id).where(*criteria).limit(1)
        with store_operation(self.session, f"exists {self.label}"):
            return self.session.scalar(stmt) is not None

    def update(self, entity: ModelT, **fields: Any) -> ModelT:
        with store_operation(self.session, f"update {self.label} {entity.id}"):
            for name, value in fields.items():
                setattr(entity, name, value)
            self.session.flush()
        return entity

    def soft_delete(self, entity_id: int, field: str, value: Any) -> None:
        with store_operation(self.session, f"soft delete {self.label} {entity_id}"):
            self.session.execute(
                update(self.model)
                .where(self.model.id == entity_id)
                .values({field: value})
                .execution_options(synchronize_session="fetch")
            )
            self.session.flush()

    def hard_delete(self, entity_id: int) -> None:
        with store_operation(self.session, f"delete {self.label} {entity_id}"):
            entity = self.session.get(self.model, entity_id)
            if entity is not None:
                self.session.delete(entity)
                self.session.flush()


class TransactionRepository(Repository[Transaction]):
    def __init__(self, session: Session) -> None:
        super().__init__(
            session, Transaction, relations=("member", "category", "tags")
        )

    def find_matching(
        self,
        query: TransactionQuery,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> tuple[list[Transaction], int]:
        return self.find(
            *query.criteria(),
            order_by=(Transaction.transaction_time.desc(), Transaction.id.desc()),
            offset=offset,
            limit=limit,
            with_relations=True,
        )

    def grouped_sum(
        self,
        group_column: Any,
        sum_column: Any,
        *criteria: Any,
        join: Optional[tuple[Any, Any]] = None,
    ) -> list[Any]:
        bucket = group_column.label("bucket")
        stmt = select(bucket, func.sum(sum_column).label("total")).select_from(
            Transaction
        )
        if join is not None:
            target, on_clause = join
            stmt = stmt.join(target, on_clause)
        stmt = stmt.where(*criteria).group_by(bucket).order_by(bucket)
        with store_operation(self.session, "grouped sum transactions"):
            return list(self.session.execute(stmt).all())

    def tag_link(self, transaction_id: int, tag_id: int) -> Optional[TransactionTag]:
        stmt = select(TransactionTag).where(
            TransactionTag.transaction_id == transaction_id,
            TransactionTag.tag_id == tag_id,
        )
        with store_operation(self.session, "get transaction tag"):
            return self.session.scalars(stmt).first()

    def link_tag(self, transaction_id: int, tag_id: int) -> TransactionTag:
        link = TransactionTag(transaction_id=transaction_id, tag_id=tag_id)
        with store_operation(self.session, "create transaction tag"):
            self.session.add(link)
            self.session.flush()
        self._expire_tags(transaction_id)
        return link

    def unlink_tag(self, transaction_id: int, tag_id: int) -> None:
        with store_operation(self.session, "delete transaction tag"):
            self.session.execute(
                delete(TransactionTag).where(
                    TransactionTag.transaction_id == transaction_id,
                    TransactionTag.tag_id == tag_id,
                )
            )
            self.session.flush()
        self._expire_tags(transaction_id)

    def tag_in_use(self, tag_id: int) -> bool:
        stmt = select(TransactionTag.id).where(TransactionTag.tag_id == tag_id).limit(1)
        with store_operation(self.session, "check tag usage"):
            return self.session.scalar(stmt) is not None

    def tags_for(self, transaction_id: int) -> list[Tag]:
        stmt = (
            select(Tag)
            .join(TransactionTag, TransactionTag.tag_id == Tag.id)
            .where(TransactionTag.transaction_id == transaction_id)
            .order_by(TransactionTag.created_at, TransactionTag.id)
        )
        with store_operation(self.session, "list transaction tags"):
            return list(self.session.scalars(stmt).all())

    def with_tag(self, tag_id: int) -> list[Transaction]:
        stmt = self._with_relations(
            select(Transaction)
            .join(TransactionTag, TransactionTag.transaction_id == Transaction.id)
            .where(
                TransactionTag.tag_id == tag_id,
                Transaction.status == TransactionStatus.valid,
            )
            .order_by(Transaction.transaction_time.desc(), Transaction.id.desc())
        )
        with store_operation(self.session, "list transactions by tag"):
            return list(self.session.scalars(stmt).unique().all())

    def _expire_tags(self, transaction_id: int) -> None:
        txn = self.session.identity_map.get(
            self.session.identity_key(Transaction, transaction_id)
        )
        if txn is not None:
            self.session.expire(txn, ["tags"])


class RecordStore:
    """Per-session bundle of repositories handed to the services."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.families = Repository(session, Family, relations=("members",))
        self.members = Repository(session, Member, relations=("family",))
        self.categories = Repository(session, Category, relations=("parent",))
        self.tags = Repository(session, Tag, relations=("family",))
        self.transactions = TransactionRepository(session)

    def commit(self, operation: str) -> None:
        with store_operation(self.session, operation):
            self.session.commit()
