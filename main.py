import logging
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from errors import (
    ConflictError,
    FinanceError,
    IntegrityMismatchError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from models import CategoryType, TransactionType
from periods import resolve_granularity, resolve_window
from repositories import TransactionQuery
from schemas import (
    CategoryIn,
    CategoryNodeOut,
    CategoryOut,
    CategoryPathOut,
    FamilyIn,
    FamilyOut,
    MemberIn,
    MemberOut,
    MemberRoleIn,
    SummaryOut,
    TagIn,
    TagOut,
    TransactionIn,
    TransactionOut,
    TransactionPage,
    TransactionTagIn,
)
from services import (
    CategoryService,
    FamilyService,
    MemberService,
    SummaryService,
    TagService,
    TransactionService,
)

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Family Finance")

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    IntegrityMismatchError: 422,
    StoreError: 500,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.exception_handler(FinanceError)
async def finance_error_handler(request: Request, exc: FinanceError) -> JSONResponse:
    status_code = next(
        (code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 400
    )
    if status_code >= 500:
        logger.error("request_failed: path=%s error=%s", request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def clamp_page_size(size: Optional[int]) -> int:
    if not size or size < 1:
        return settings.default_page_size
    return min(size, settings.max_page_size)


def transaction_query(
    type: Optional[TransactionType] = None,
    category_id: Optional[int] = Query(None, alias="categoryId"),
    member_id: Optional[int] = Query(None, alias="memberId"),
    payment_method: Optional[str] = Query(None, alias="paymentMethod"),
    start_time: Optional[datetime] = Query(None, alias="startTime"),
    end_time: Optional[datetime] = Query(None, alias="endTime"),
) -> TransactionQuery:
    return TransactionQuery(
        type=type,
        category_id=category_id,
        member_id=member_id,
        payment_method=payment_method,
        start=start_time,
        end=end_time,
    )


def no_content() -> Response:
    return Response(status_code=204)


# Families


@app.post("/api/families", response_model=FamilyOut, status_code=201)
def create_family(payload: FamilyIn, db: Session = Depends(get_db)):
    service = FamilyService(db)
    family = service.create(payload)
    return service.get(family.id)


@app.get("/api/families", response_model=list[FamilyOut])
def list_families(db: Session = Depends(get_db)):
    return FamilyService(db).list_all()


@app.get("/api/families/{family_id}", response_model=FamilyOut)
def get_family(family_id: int, db: Session = Depends(get_db)):
    return FamilyService(db).get(family_id)


@app.put("/api/families/{family_id}", response_model=FamilyOut)
def update_family(family_id: int, payload: FamilyIn, db: Session = Depends(get_db)):
    service = FamilyService(db)
    service.update(family_id, payload)
    return service.get(family_id)


@app.delete("/api/families/{family_id}", status_code=204)
def delete_family(family_id: int, db: Session = Depends(get_db)):
    FamilyService(db).delete(family_id)
    return no_content()


@app.post("/api/families/{family_id}/members", response_model=MemberOut, status_code=201)
def create_member(family_id: int, payload: MemberIn, db: Session = Depends(get_db)):
    return MemberService(db).create(family_id, payload)


@app.get("/api/families/{family_id}/members", response_model=list[MemberOut])
def list_family_members(
    family_id: int,
    include_removed: bool = Query(False, alias="includeRemoved"),
    db: Session = Depends(get_db),
):
    return MemberService(db).list_by_family(family_id, include_removed=include_removed)


@app.get("/api/families/{family_id}/members/active", response_model=list[MemberOut])
def list_active_family_members(family_id: int, db: Session = Depends(get_db)):
    return MemberService(db).list_active_by_family(family_id)


@app.post(
    "/api/families/{family_id}/transactions",
    response_model=TransactionOut,
    status_code=201,
)
def create_transaction(
    family_id: int, payload: TransactionIn, db: Session = Depends(get_db)
):
    service = TransactionService(db)
    txn = service.create(family_id, payload)
    return service.get(txn.id)


@app.get("/api/families/{family_id}/transactions", response_model=TransactionPage)
def list_family_transactions(
    family_id: int,
    page: int = 1,
    page_size: Optional[int] = Query(None, alias="pageSize"),
    query: TransactionQuery = Depends(transaction_query),
    db: Session = Depends(get_db),
):
    size = clamp_page_size(page_size)
    page = max(page, 1)
    items, total = TransactionService(db).list_by_family(family_id, query, page, size)
    return TransactionPage(
        data=[TransactionOut.model_validate(item) for item in items],
        total=total,
        page=page,
        size=size,
    )


@app.get(
    "/api/families/{family_id}/transactions/time-range",
    response_model=list[TransactionOut],
)
def list_family_transactions_in_range(
    family_id: int,
    query: TransactionQuery = Depends(transaction_query),
    db: Session = Depends(get_db),
):
    return TransactionService(db).list_by_time_range(
        family_id, query.start, query.end, query
    )


@app.get(
    "/api/families/{family_id}/transactions/summary/category",
    response_model=SummaryOut,
)
def category_summary(
    family_id: int,
    type: TransactionType = TransactionType.expense,
    start_time: Optional[datetime] = Query(None, alias="startTime"),
    end_time: Optional[datetime] = Query(None, alias="endTime"),
    db: Session = Depends(get_db),
):
    window = resolve_window(start_time, end_time)
    totals = SummaryService(db).by_category(family_id, window.start, window.end, type)
    return SummaryOut(
        start=window.start, end=window.end, group_by="category", totals=totals
    )


@app.get(
    "/api/families/{family_id}/transactions/summary/time",
    response_model=SummaryOut,
)
def time_summary(
    family_id: int,
    group_by: Optional[str] = Query(None, alias="groupBy"),
    type: Optional[TransactionType] = None,
    start_time: Optional[datetime] = Query(None, alias="startTime"),
    end_time: Optional[datetime] = Query(None, alias="endTime"),
    db: Session = Depends(get_db),
):
    window = resolve_window(start_time, end_time)
    granularity = resolve_granularity(group_by)
    totals = SummaryService(db).by_time(
        family_id, window.start, window.end, granularity, type
    )
    return SummaryOut(
        start=window.start, end=window.end, group_by=granularity.value, totals=totals
    )


@app.post("/api/families/{family_id}/tags", response_model=TagOut, status_code=201)
def create_tag(family_id: int, payload: TagIn, db: Session = Depends(get_db)):
    return TagService(db).create(family_id, payload)


@app.get("/api/families/{family_id}/tags", response_model=list[TagOut])
def list_family_tags(family_id: int, db: Session = Depends(get_db)):
    return TagService(db).list_by_family(family_id)


@app.get("/api/families/{family_id}/tags/type", response_model=list[TagOut])
def list_family_tags_by_type(
    family_id: int, type: str = Query(...), db: Session = Depends(get_db)
):
    return TagService(db).list_by_type(family_id, type)


# Members


@app.get("/api/members", response_model=list[MemberOut])
def list_members(db: Session = Depends(get_db)):
    return MemberService(db).list_all()


@app.get("/api/members/{member_id}", response_model=MemberOut)
def get_member(member_id: int, db: Session = Depends(get_db)):
    return MemberService(db).get(member_id)


@app.put("/api/members/{member_id}", response_model=MemberOut)
def update_member(member_id: int, payload: MemberIn, db: Session = Depends(get_db)):
    return MemberService(db).update(member_id, payload)


@app.put("/api/members/{member_id}/role", response_model=MemberOut)
def change_member_role(
    member_id: int, payload: MemberRoleIn, db: Session = Depends(get_db)
):
    return MemberService(db).change_role(member_id, payload.role)


@app.delete("/api/members/{member_id}", status_code=204)
def delete_member(member_id: int, db: Session = Depends(get_db)):
    MemberService(db).delete(member_id)
    return no_content()


# Categories


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    return CategoryService(db).create(payload)


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.get("/api/categories/type/list", response_model=list[CategoryOut])
def list_categories_by_type(type: CategoryType, db: Session = Depends(get_db)):
    return CategoryService(db).list_by_type(type)


@app.get("/api/categories/type/tree", response_model=list[CategoryNodeOut])
def category_tree(type: CategoryType, db: Session = Depends(get_db)):
    return CategoryService(db).tree_by_type(type)


@app.get("/api/categories/parent/children", response_model=list[CategoryOut])
def category_children(
    parent_id: Optional[int] = Query(None, alias="parentId"),
    db: Session = Depends(get_db),
):
    return CategoryService(db).children_of(parent_id)


@app.get("/api/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, db: Session = Depends(get_db)):
    return CategoryService(db).get(category_id)


@app.get("/api/categories/{category_id}/path", response_model=CategoryPathOut)
def get_category_path(category_id: int, db: Session = Depends(get_db)):
    return CategoryPathOut(
        id=category_id, path=CategoryService(db).full_path(category_id)
    )


@app.put("/api/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int, payload: CategoryIn, db: Session = Depends(get_db)
):
    return CategoryService(db).update(category_id, payload)


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    CategoryService(db).delete(category_id)
    return no_content()


# Transactions


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    return TransactionService(db).get(transaction_id)


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int, payload: TransactionIn, db: Session = Depends(get_db)
):
    service = TransactionService(db)
    service.update(transaction_id, payload)
    return service.get(transaction_id)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    TransactionService(db).delete(transaction_id)
    return no_content()


@app.get("/api/transactions/{transaction_id}/tags", response_model=list[TagOut])
def list_transaction_tags(transaction_id: int, db: Session = Depends(get_db)):
    return TransactionService(db).tags_for(transaction_id)


@app.post("/api/transactions/{transaction_id}/tags", status_code=204)
def add_transaction_tag(
    transaction_id: int, payload: TransactionTagIn, db: Session = Depends(get_db)
):
    TransactionService(db).add_tag(transaction_id, payload.tag_id)
    return no_content()


@app.delete("/api/transactions/{transaction_id}/tags/{tag_id}", status_code=204)
def remove_transaction_tag(
    transaction_id: int, tag_id: int, db: Session = Depends(get_db)
):
    TransactionService(db).remove_tag(transaction_id, tag_id)
    return no_content()


# Tags


@app.get("/api/tags", response_model=list[TagOut])
def list_tags(db: Session = Depends(get_db)):
    return TagService(db).list_all()


@app.get("/api/tags/{tag_id}", response_model=TagOut)
def get_tag(tag_id: int, db: Session = Depends(get_db)):
    return TagService(db).get(tag_id)


@app.get("/api/tags/{tag_id}/transactions", response_model=list[TransactionOut])
def list_tag_transactions(tag_id: int, db: Session = Depends(get_db)):
    return TagService(db).transactions_for(tag_id)


@app.put("/api/tags/{tag_id}", response_model=TagOut)
def update_tag(tag_id: int, payload: TagIn, db: Session = Depends(get_db)):
    return TagService(db).update(tag_id, payload)


@app.delete("/api/tags/{tag_id}", status_code=204)
def delete_tag(tag_id: int, db: Session = Depends(get_db)):
    TagService(db).delete(tag_id)
    return no_content()
