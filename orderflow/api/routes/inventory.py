from typing import List

from fastapi import APIRouter, Depends

from orderflow.api.dependencies import get_inventory_ledger
from orderflow.models.schemas import InventoryCreate, InventoryRecord, ReorderLevelUpdate, StockQuantity
from orderflow.services.inventory_ledger import InventoryLedger

router = APIRouter()


@router.post("/", response_model=InventoryRecord)
def create_inventory_record(item_data: InventoryCreate, ledger: InventoryLedger = Depends(get_inventory_ledger)):
    """Provision stock tracking for a product"""
    return ledger.create(item_data.product_id, item_data.quantity_in_stock, item_data.reorder_level)


@router.get("/low-stock", response_model=List[InventoryRecord])
def get_low_stock(ledger: InventoryLedger = Depends(get_inventory_ledger)):
    """Records at or below their reorder level"""
    return ledger.list_low_stock()


@router.get("/out-of-stock", response_model=List[InventoryRecord])
def get_out_of_stock(ledger: InventoryLedger = Depends(get_inventory_ledger)):
    return ledger.list_out_of_stock()


@router.get("/product/{product_id}", response_model=InventoryRecord)
def get_inventory(product_id: int, ledger: InventoryLedger = Depends(get_inventory_ledger)):
    return ledger.get_by_product(product_id)


@router.get("/product/{product_id}/in-stock")
def is_product_in_stock(product_id: int, ledger: InventoryLedger = Depends(get_inventory_ledger)):
    return {"product_id": product_id, "in_stock": ledger.is_in_stock(product_id)}


@router.get("/product/{product_id}/available-stock")
def has_available_stock(product_id: int, quantity: int, ledger: InventoryLedger = Depends(get_inventory_ledger)):
    return {
        "product_id": product_id,
        "quantity": quantity,
        "available": ledger.has_available(product_id, quantity),
    }


@router.put("/product/{product_id}", response_model=InventoryRecord)
def update_stock(product_id: int, body: StockQuantity, ledger: InventoryLedger = Depends(get_inventory_ledger)):
    """Set the absolute stock level"""
    return ledger.set_stock(product_id, body.quantity)


@router.patch("/product/{product_id}/add", response_model=InventoryRecord)
def add_stock(product_id: int, body: StockQuantity, ledger: InventoryLedger = Depends(get_inventory_ledger)):
    return ledger.add_stock(product_id, body.quantity)


@router.patch("/product/{product_id}/remove", response_model=InventoryRecord)
def remove_stock(product_id: int, body: StockQuantity, ledger: InventoryLedger = Depends(get_inventory_ledger)):
    return ledger.remove_stock(product_id, body.quantity)


@router.patch("/product/{product_id}/reserve", response_model=InventoryRecord)
def reserve_stock(product_id: int, body: StockQuantity, ledger: InventoryLedger = Depends(get_inventory_ledger)):
    return ledger.reserve(product_id, body.quantity)


@router.patch("/product/{product_id}/release", response_model=InventoryRecord)
def release_stock(product_id: int, body: StockQuantity, ledger: InventoryLedger = Depends(get_inventory_ledger)):
    return ledger.release(product_id, body.quantity)


@router.patch("/product/{product_id}/reorder-level", response_model=InventoryRecord)
def update_reorder_level(
    product_id: int,
    body: ReorderLevelUpdate,
    ledger: InventoryLedger = Depends(get_inventory_ledger),
):
    return ledger.update_reorder_level(product_id, body.reorder_level)
