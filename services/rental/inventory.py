# ============================================================
# inventory.py — Inventory Ledger
# ------------------------------------------------------------
# Tracks available units of cycles and accessories.
#   reserve : available -= n, only while available >= n
#   release : available += n, only while it stays <= total
# Both are a single conditional UPDATE so two requests racing
# for the last unit cannot both win. Maintenance holds a cycle
# unit the same way a booking does.
# ============================================================
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Type, Union

from sqlalchemy import update
from sqlmodel import Session

from .errors import NotFoundError, OutOfStock, ValidationError
from .models import Accessory, Cycle, MaintenanceRecord
from .repository import CatalogRepository, unit_of_work

log = logging.getLogger(__name__)

Item = Union[Type[Cycle], Type[Accessory]]


def _kind(model: Item) -> str:
    return model.__name__.lower()


def reserve(session: Session, model: Item, item_id: int, quantity: int = 1):
    if quantity < 1:
        raise ValidationError("quantity must be at least 1", {"quantity": quantity})
    res = session.execute(
        update(model)
        .where(
            model.id == item_id,
            model.is_active == True,  # noqa: E712
            model.available_quantity >= quantity,
        )
        .values(available_quantity=model.available_quantity - quantity)
    )
    if res.rowcount == 1:
        return
    item = session.get(model, item_id)
    if not item or not item.is_active:
        raise NotFoundError(f"{_kind(model)} {item_id} not found", {f"{_kind(model)}_id": item_id})
    raise OutOfStock(
        f"{item.name} is out of stock",
        {
            "item": _kind(model),
            "item_id": item_id,
            "requested": quantity,
            "available": item.available_quantity,
        },
    )


def release(session: Session, model: Item, item_id: int, quantity: int = 1) -> bool:
    if quantity < 1:
        return False
    res = session.execute(
        update(model)
        .where(
            model.id == item_id,
            model.available_quantity + quantity <= model.total_quantity,
        )
        .values(available_quantity=model.available_quantity + quantity)
    )
    if res.rowcount == 1:
        return True
    # would exceed total: a unit is being released twice
    log.warning("[inventory] release of %d x %s %s ignored", quantity, _kind(model), item_id)
    return False


# ------------------------------------------------------------
# Maintenance
# ------------------------------------------------------------
def start_maintenance(
    session: Session,
    cycle_id: int,
    now: datetime,
    maintenance_type: str = "repair",
    description: Optional[str] = None,
) -> MaintenanceRecord:
    with unit_of_work(session):
        CatalogRepository(session).require_cycle(cycle_id)
        reserve(session, Cycle, cycle_id)
        record = MaintenanceRecord(
            cycle_id=cycle_id,
            maintenance_type=maintenance_type,
            description=description,
            reported_at=now,
        )
        session.add(record)
    session.refresh(record)
    log.info("[inventory] cycle %s in maintenance (record %s)", cycle_id, record.id)
    return record


def complete_maintenance(
    session: Session,
    record_id: int,
    now: datetime,
    cost: Optional[Decimal] = None,
) -> MaintenanceRecord:
    with unit_of_work(session):
        record = CatalogRepository(session).require_maintenance(record_id)
        res = session.execute(
            update(MaintenanceRecord)
            .where(MaintenanceRecord.id == record_id, MaintenanceRecord.status == "pending")
            .values(status="completed", completed_at=now, cost=cost)
        )
        # already completed: nothing to release again
        if res.rowcount == 1:
            release(session, Cycle, record.cycle_id)
    session.refresh(record)
    return record
