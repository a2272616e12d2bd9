from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from sqlalchemy.orm import Session
from orderpay.api.deps import get_db, get_identity_dep, get_order_manager
from orderpay.db.models import OrderPaymentStatus, OrderStatus
from orderpay.schemas import OrderCreate, OrderUpdate, OrderRead, OrderPage
from orderpay.services.orders import OrderManager

router = APIRouter()

def _owner(identity: dict) -> Optional[str]:
    # admins may act on any order
    return None if identity.get("role") == "admin" else identity.get("sub")

@router.post("/v1/orders", response_model=OrderRead, status_code=201)
def create_order(payload: OrderCreate, identity: dict = Depends(get_identity_dep),
                 db: Session = Depends(get_db), orders: OrderManager = Depends(get_order_manager)):
    if not orders.validate_stock(db, payload.items):
        raise HTTPException(status_code=400, detail="Insufficient stock for one or more items")
    order = orders.create_order(db, identity["sub"], payload.items, payload)
    return OrderRead.model_validate(order)

@router.get("/v1/orders", response_model=OrderPage)
def list_orders(status: Optional[OrderStatus] = None, payment_status: Optional[OrderPaymentStatus] = None,
                page: int = Query(1, ge=1), per_page: int = Query(15, ge=1, le=100),
                identity: dict = Depends(get_identity_dep), db: Session = Depends(get_db),
                orders: OrderManager = Depends(get_order_manager)):
    rows, total = orders.list_orders(
        db, identity["sub"],
        status=status.value if status else None,
        payment_status=payment_status.value if payment_status else None,
        page=page, per_page=per_page,
    )
    return OrderPage(items=[OrderRead.model_validate(o) for o in rows], page=page, per_page=per_page, total=total)

@router.get("/v1/orders/{order_id}", response_model=OrderRead)
def get_order(order_id: int, identity: dict = Depends(get_identity_dep), db: Session = Depends(get_db),
              orders: OrderManager = Depends(get_order_manager)):
    return OrderRead.model_validate(orders.get_order(db, order_id, user_email=_owner(identity)))

@router.put("/v1/orders/{order_id}", response_model=OrderRead)
def update_order(order_id: int, payload: OrderUpdate, identity: dict = Depends(get_identity_dep),
                 db: Session = Depends(get_db), orders: OrderManager = Depends(get_order_manager)):
    order = orders.get_order(db, order_id, user_email=_owner(identity))
    return OrderRead.model_validate(orders.update_order(db, order, payload))

@router.delete("/v1/orders/{order_id}")
def delete_order(order_id: int, identity: dict = Depends(get_identity_dep), db: Session = Depends(get_db),
                 orders: OrderManager = Depends(get_order_manager)):
    order = orders.get_order(db, order_id, user_email=_owner(identity))
    orders.delete_order(db, order)
    return {"status": "deleted", "order_id": order_id}

@router.post("/v1/orders/{order_id}/cancel", response_model=OrderRead)
def cancel_order(order_id: int, identity: dict = Depends(get_identity_dep), db: Session = Depends(get_db),
                 orders: OrderManager = Depends(get_order_manager)):
    order = orders.get_order(db, order_id, user_email=_owner(identity))
    return OrderRead.model_validate(orders.cancel_order(db, order))
