from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import IntegrityMismatchError, NotFoundError, ValidationError
from models import CategoryType, TransactionStatus, TransactionType
from periods import local_now
from repositories import TransactionQuery
from schemas import CategoryIn, FamilyIn, MemberIn, TransactionIn
from services import CategoryService, FamilyService, MemberService, TransactionService


def _seed(session: Session):
    family = FamilyService(session).create(FamilyIn(name="Smiths"))
    member = MemberService(session).create(family.id, MemberIn(name="Alex"))
    food = CategoryService(session).create(
        CategoryIn(name="Food", type=CategoryType.expense)
    )
    salary = CategoryService(session).create(
        CategoryIn(name="Salary", type=CategoryType.income)
    )
    return family, member, food, salary


def _payload(member, category, amount="12.50", type=TransactionType.expense, **extra):
    return TransactionIn(
        member_id=member.id,
        category_id=category.id,
        amount=Decimal(amount),
        type=type,
        transaction_time=extra.pop("transaction_time", datetime(2025, 1, 5, 12, 0)),
        **extra,
    )


def test_create_transaction_records_valid_status() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, member, food, _ = _seed(session)

        txn = TransactionService(session).create(
            family.id, _payload(member, food, "12.345", note=" lunch ")
        )

        loaded = TransactionService(session).get(txn.id)
        assert loaded.status == TransactionStatus.valid
        assert loaded.amount == Decimal("12.35")
        assert loaded.note == "lunch"
        assert loaded.family_id == family.id


@pytest.mark.parametrize("amount", ["0", "-5", "0.001", "10000000000"])
def test_amount_must_be_positive_and_bounded(amount: str) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, member, food, _ = _seed(session)

        with pytest.raises(ValidationError):
            TransactionService(session).create(family.id, _payload(member, food, amount))


def test_future_transaction_time_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, member, food, _ = _seed(session)
        tomorrow = local_now() + timedelta(days=1)

        with pytest.raises(ValidationError):
            TransactionService(session).create(
                family.id, _payload(member, food, transaction_time=tomorrow)
            )


def test_category_type_must_match_transaction_type() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, member, food, salary = _seed(session)
        service = TransactionService(session)

        with pytest.raises(IntegrityMismatchError):
            service.create(family.id, _payload(member, salary, type=TransactionType.expense))

        txn = service.create(
            family.id, _payload(member, salary, "3000", type=TransactionType.income)
        )
        assert txn.type == TransactionType.income


def test_member_must_belong_to_family() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, member, food, _ = _seed(session)
        other = FamilyService(session).create(FamilyIn(name="Jones"))
        service = TransactionService(session)

        with pytest.raises(IntegrityMismatchError):
            service.create(other.id, _payload(member, food))

        MemberService(session).delete(member.id)
        with pytest.raises(NotFoundError):
            service.create(family.id, _payload(member, food))


def test_missing_references_are_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, member, food, _ = _seed(session)
        service = TransactionService(session)

        with pytest.raises(NotFoundError):
            service.create(999, _payload(member, food))

        CategoryService(session).delete(food.id)
        with pytest.raises(NotFoundError):
            service.create(family.id, _payload(member, food))


def test_delete_is_soft() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, member, food, _ = _seed(session)
        service = TransactionService(session)
        txn = service.create(family.id, _payload(member, food))

        service.delete(txn.id)

        with pytest.raises(NotFoundError):
            service.get(txn.id)
        assert service.get(txn.id, include_deleted=True).status == TransactionStatus.deleted
        with pytest.raises(NotFoundError):
            service.delete(txn.id)
        items, total = service.list_by_family(family.id)
        assert (items, total) == ([], 0)


def test_update_revalidates_references() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, member, food, salary = _seed(session)
        service = TransactionService(session)
        txn = service.create(family.id, _payload(member, food))

        with pytest.raises(IntegrityMismatchError):
            service.update(txn.id, _payload(member, salary))

        updated = service.update(
            txn.id, _payload(member, food, "20", payment_method="card")
        )
        assert updated.amount == Decimal("20.00")
        assert updated.payment_method == "card"


def test_list_by_family_filters_and_paginates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, member, food, salary = _seed(session)
        service = TransactionService(session)
        for day in range(1, 6):
            service.create(
                family.id,
                _payload(member, food, str(day), transaction_time=datetime(2025, 1, day)),
            )
        service.create(
            family.id,
            _payload(
                member,
                salary,
                "3000",
                type=TransactionType.income,
                transaction_time=datetime(2025, 1, 3),
                payment_method="bank",
            ),
        )

        page_one, total = service.list_by_family(family.id, page=1, size=4)
        page_two, _ = service.list_by_family(family.id, page=2, size=4)
        assert total == 6
        assert len(page_one) == 4
        assert len(page_two) == 2
        # Newest first.
        assert page_one[0].transaction_time >= page_one[-1].transaction_time

        expenses, expense_total = service.list_by_family(
            family.id, TransactionQuery(type=TransactionType.expense)
        )
        assert expense_total == 5
        assert all(t.type == TransactionType.expense for t in expenses)

        banked, _ = service.list_by_family(
            family.id, TransactionQuery(payment_method="bank")
        )
        assert [t.amount for t in banked] == [Decimal("3000.00")]

        windowed, window_total = service.list_by_family(
            family.id,
            TransactionQuery(start=datetime(2025, 1, 2), end=datetime(2025, 1, 3, 23, 59)),
        )
        assert window_total == 3


def test_list_by_time_range() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, member, food, _ = _seed(session)
        service = TransactionService(session)
        service.create(family.id, _payload(member, food, transaction_time=datetime(2025, 1, 1)))
        service.create(family.id, _payload(member, food, transaction_time=datetime(2025, 2, 1)))

        january = service.list_by_time_range(
            family.id, datetime(2025, 1, 1), datetime(2025, 1, 31, 23, 59)
        )

        assert [t.transaction_time for t in january] == [datetime(2025, 1, 1)]
        with pytest.raises(ValidationError):
            service.list_by_time_range(family.id, datetime(2025, 2, 1), datetime(2025, 1, 1))


def test_category_type_is_locked_while_transactions_use_it() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, member, food, _ = _seed(session)
        categories = CategoryService(session)
        transactions = TransactionService(session)
        txn = transactions.create(family.id, _payload(member, food))

        with pytest.raises(IntegrityMismatchError):
            categories.update(food.id, CategoryIn(name="Food", type=CategoryType.income))

        loaded = transactions.get(txn.id)
        assert loaded.category.type == loaded.type

        # Renames keep working, and a deleted transaction no longer pins the type.
        assert categories.update(
            food.id, CategoryIn(name="Meals", type=CategoryType.expense)
        ).name == "Meals"
        transactions.delete(txn.id)
        updated = categories.update(food.id, CategoryIn(name="Meals", type=CategoryType.income))
        assert updated.type == CategoryType.income


def test_listing_leaves_the_callers_query_untouched() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, member, food, _ = _seed(session)
        service = TransactionService(session)
        service.create(family.id, _payload(member, food, transaction_time=datetime(2025, 1, 1)))
        query = TransactionQuery(type=TransactionType.expense, status=None)

        service.list_by_family(family.id, query)
        service.list_by_time_range(
            family.id, datetime(2025, 1, 1), datetime(2025, 1, 31), query
        )

        assert query == TransactionQuery(type=TransactionType.expense, status=None)
