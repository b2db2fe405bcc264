from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import ConflictError, IntegrityMismatchError, NotFoundError, ValidationError
from models import CategoryType, TransactionType
from schemas import CategoryIn, FamilyIn, MemberIn, TagIn, TransactionIn
from services import (
    CategoryService,
    FamilyService,
    MemberService,
    TagService,
    TransactionService,
)


def _family_with_transaction(session: Session, name: str = "Smiths"):
    family = FamilyService(session).create(FamilyIn(name=name))
    member = MemberService(session).create(family.id, MemberIn(name=f"{name} parent"))
    category = CategoryService(session).create(
        CategoryIn(name=f"{name} food", type=CategoryType.expense)
    )
    txn = TransactionService(session).create(
        family.id,
        TransactionIn(
            member_id=member.id,
            category_id=category.id,
            amount=Decimal("12.99"),
            type=TransactionType.expense,
            transaction_time=datetime(2025, 1, 5, 12, 0),
            note="Lunch",
        ),
    )
    return family, txn


def test_tag_names_unique_per_family() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        smiths = FamilyService(session).create(FamilyIn(name="Smiths"))
        jones = FamilyService(session).create(FamilyIn(name="Jones"))
        service = TagService(session)
        service.create(smiths.id, TagIn(name="Dining", type="habit", color="#ff8800"))

        with pytest.raises(ConflictError):
            service.create(smiths.id, TagIn(name=" dining ", type="habit"))

        other = service.create(jones.id, TagIn(name="Dining", type="habit"))
        assert other.family_id == jones.id


def test_tag_fields_are_validated() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family = FamilyService(session).create(FamilyIn(name="Smiths"))
        service = TagService(session)

        with pytest.raises(ValidationError):
            service.create(family.id, TagIn(name="Trip", type=""))
        with pytest.raises(ValidationError):
            service.create(family.id, TagIn(name="Trip", type="event", color="red"))
        with pytest.raises(ValidationError):
            service.create(family.id, TagIn(name="Trip", type="event", color="#12345"))
        with pytest.raises(NotFoundError):
            service.create(999, TagIn(name="Trip", type="event"))

        tag = service.create(family.id, TagIn(name="Trip", type="event", color="#A1b2C3"))
        assert tag.color == "#A1b2C3"


def test_list_tags_by_type() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family = FamilyService(session).create(FamilyIn(name="Smiths"))
        service = TagService(session)
        service.create(family.id, TagIn(name="Trip", type="event"))
        service.create(family.id, TagIn(name="Birthday", type="event"))
        service.create(family.id, TagIn(name="Dining", type="habit"))

        assert [t.name for t in service.list_by_type(family.id, "event")] == [
            "Birthday",
            "Trip",
        ]
        assert len(service.list_by_family(family.id)) == 3
        assert len(service.list_all()) == 3


def test_tag_update_checks_uniqueness() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family = FamilyService(session).create(FamilyIn(name="Smiths"))
        service = TagService(session)
        trip = service.create(family.id, TagIn(name="Trip", type="event"))
        service.create(family.id, TagIn(name="Dining", type="habit"))

        with pytest.raises(ConflictError):
            service.update(trip.id, TagIn(name="DINING", type="event"))

        renamed = service.update(trip.id, TagIn(name="Holiday", type="event"))
        assert renamed.name == "Holiday"


def test_attach_and_detach_tags() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, txn = _family_with_transaction(session)
        tags = TagService(session)
        transactions = TransactionService(session)
        dining = tags.create(family.id, TagIn(name="Dining", type="habit"))
        work = tags.create(family.id, TagIn(name="Work", type="context"))

        transactions.add_tag(txn.id, dining.id)
        transactions.add_tag(txn.id, work.id)

        assert [t.id for t in transactions.tags_for(txn.id)] == [dining.id, work.id]
        assert [t.id for t in transactions.get(txn.id).tags] == [dining.id, work.id]
        assert [t.id for t in tags.transactions_for(dining.id)] == [txn.id]

        with pytest.raises(ConflictError):
            transactions.add_tag(txn.id, dining.id)

        transactions.remove_tag(txn.id, dining.id)
        assert [t.id for t in transactions.tags_for(txn.id)] == [work.id]
        with pytest.raises(NotFoundError):
            transactions.remove_tag(txn.id, dining.id)


def test_tag_from_another_family_cannot_be_attached() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, txn = _family_with_transaction(session, "Smiths")
        jones, _ = _family_with_transaction(session, "Jones")
        foreign = TagService(session).create(jones.id, TagIn(name="Trip", type="event"))

        with pytest.raises(IntegrityMismatchError):
            TransactionService(session).add_tag(txn.id, foreign.id)


def test_attach_requires_live_transaction_and_tag() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, txn = _family_with_transaction(session)
        transactions = TransactionService(session)
        tag = TagService(session).create(family.id, TagIn(name="Trip", type="event"))

        with pytest.raises(NotFoundError):
            transactions.add_tag(txn.id, 999)

        transactions.delete(txn.id)
        with pytest.raises(NotFoundError):
            transactions.add_tag(txn.id, tag.id)


def test_tag_in_use_cannot_be_deleted() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family, txn = _family_with_transaction(session)
        tags = TagService(session)
        transactions = TransactionService(session)
        tag = tags.create(family.id, TagIn(name="Trip", type="event"))
        transactions.add_tag(txn.id, tag.id)

        with pytest.raises(ConflictError):
            tags.delete(tag.id)

        transactions.remove_tag(txn.id, tag.id)
        tags.delete(tag.id)

        assert not tags.exists(tag.id)
        with pytest.raises(NotFoundError):
            tags.get(tag.id)
        # A deactivated tag frees its name.
        assert tags.create(family.id, TagIn(name="Trip", type="event")).id != tag.id


def test_tag_uniqueness_folds_non_ascii_case() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family = FamilyService(session).create(FamilyIn(name="Smiths"))
        service = TagService(session)
        service.create(family.id, TagIn(name="Été", type="season"))

        with pytest.raises(ConflictError):
            service.create(family.id, TagIn(name="ÉTÉ", type="season"))
