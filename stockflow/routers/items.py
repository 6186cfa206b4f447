from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.permissions import require_permission
from stockflow.core.security_current import Actor
from stockflow.models.item import Item, Partner, Vendor, Warehouse
from stockflow.schemas.common import pagination_meta
from stockflow.schemas.stock import ItemListOut, ItemOut, PartnerOut, VendorOut, WarehouseOut
from stockflow.services.workflow import require_item

router = APIRouter(prefix="/items", tags=["items"])
master_router = APIRouter(tags=["items"])


def _item_out(item: Item) -> ItemOut:
    return ItemOut(
        id=item.id,
        sku=item.sku,
        name=item.name,
        uom=item.uom,
        current_stock=item.current_stock,
        is_active=item.is_active,
        created_at=item.created_at,
    )


@router.get(
    "",
    response_model=ItemListOut,
    summary="List items with current stock",
    responses=error_responses(401, 403, 422, 500),
)
def list_items(
    q: str | None = Query(default=None, description="Search SKU or name"),
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("stock.read")),
):
    filters = []
    if not include_inactive:
        filters.append(Item.is_active.is_(True))
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        filters.append(or_(Item.sku.ilike(pattern), Item.name.ilike(pattern)))

    total = int(db.execute(select(func.count(Item.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Item).where(*filters).order_by(Item.sku.asc()).offset(offset).limit(limit)
    ).scalars().all()
    items = [_item_out(row) for row in rows]
    return ItemListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{item_id}",
    response_model=ItemOut,
    summary="Get an item",
    responses=error_responses(401, 403, 404, 500),
)
def get_item(
    item_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("stock.read")),
):
    return _item_out(require_item(db, item_id))


@master_router.get(
    "/warehouses",
    response_model=list[WarehouseOut],
    summary="List warehouses",
    responses=error_responses(401, 403, 500),
)
def list_warehouses(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("stock.read")),
):
    rows = db.execute(select(Warehouse).order_by(Warehouse.code.asc())).scalars().all()
    return [WarehouseOut(id=row.id, code=row.code, name=row.name, is_default=row.is_default) for row in rows]


@master_router.get(
    "/vendors",
    response_model=list[VendorOut],
    summary="List vendors",
    responses=error_responses(401, 403, 500),
)
def list_vendors(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("stock.read")),
):
    rows = db.execute(select(Vendor).order_by(Vendor.code.asc())).scalars().all()
    return [VendorOut(id=row.id, code=row.code, name=row.name) for row in rows]


@master_router.get(
    "/partners",
    response_model=list[PartnerOut],
    summary="List outbound partners",
    responses=error_responses(401, 403, 500),
)
def list_partners(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission("stock.read")),
):
    rows = db.execute(select(Partner).order_by(Partner.code.asc())).scalars().all()
    return [PartnerOut(id=row.id, code=row.code, name=row.name, contact=row.contact) for row in rows]
