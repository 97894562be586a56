from __future__ import annotations

from sqlalchemy.orm import Session

from app.errors import NotFoundError
from app.models import Department, Item, Supplier, Uom, User, Warehouse, WarehouseLocation


def _get(db: Session, model, entity_id: int | None, label: str):
    row = db.get(model, entity_id) if entity_id is not None else None
    if not row:
        raise NotFoundError(f'{label} not found')
    return row


def get_item(db: Session, item_id: int) -> Item:
    return _get(db, Item, item_id, 'Item')


def get_uom(db: Session, uom_id: int) -> Uom:
    return _get(db, Uom, uom_id, 'UOM')


def get_supplier(db: Session, supplier_id: int) -> Supplier:
    return _get(db, Supplier, supplier_id, 'Supplier')


def get_warehouse(db: Session, warehouse_id: int) -> Warehouse:
    return _get(db, Warehouse, warehouse_id, 'Warehouse')


def get_location(db: Session, location_id: int) -> WarehouseLocation:
    return _get(db, WarehouseLocation, location_id, 'Location')


def get_department(db: Session, department_id: int) -> Department:
    return _get(db, Department, department_id, 'Department')


def get_user(db: Session, user_id: int) -> User:
    return _get(db, User, user_id, 'User')


def item_snapshot(item: Item) -> dict:
    return {'id': item.id, 'sku': item.sku, 'name': item.name}


def uom_snapshot(uom: Uom | None) -> dict:
    if uom is None:
        return {}
    return {'id': uom.id, 'code': uom.code, 'name': uom.name}


def supplier_snapshot(supplier: Supplier) -> dict:
    return {
        'id': supplier.id,
        'code': supplier.code,
        'name': supplier.name,
        'contact_name': supplier.contact_name,
        'phone': supplier.phone,
        'email': supplier.email,
        'address': supplier.address,
    }


def warehouse_snapshot(warehouse: Warehouse) -> dict:
    return {'id': warehouse.id, 'code': warehouse.code, 'name': warehouse.name}
