from fastapi import Depends, HTTPException, Header
from sqlalchemy.orm import Session
import jwt
from orderpay.db.session import SessionLocal
from orderpay.core.config import settings
from orderpay.gateways.registry import GatewayRegistry
from orderpay.services.orders import OrderManager
from orderpay.services.payments import PaymentOrchestrator

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_identity_dep(authorization: str | None = Header(default=None, alias="Authorization")) -> dict:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid access token")
    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Token has no subject")
    return payload

def require_admin(identity: dict = Depends(get_identity_dep)) -> dict:
    if identity.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return identity

# built lazily so importing the app never needs gateway credentials
_registry: GatewayRegistry | None = None
_orders: OrderManager | None = None
_orchestrator: PaymentOrchestrator | None = None

def get_registry() -> GatewayRegistry:
    global _registry
    if _registry is None:
        _registry = GatewayRegistry.from_settings(settings)
    return _registry

def get_order_manager() -> OrderManager:
    global _orders
    if _orders is None:
        _orders = OrderManager()
    return _orders

def get_orchestrator(registry: GatewayRegistry = Depends(get_registry),
                     orders: OrderManager = Depends(get_order_manager)) -> PaymentOrchestrator:
    global _orchestrator
    if _orchestrator is None or _orchestrator.registry is not registry or _orchestrator.orders is not orders:
        _orchestrator = PaymentOrchestrator(registry, orders=orders, ledger=orders.ledger, events=orders.events)
    return _orchestrator

def get_trusted_webhook_gateways() -> set[str]:
    return settings.trusted_webhook_gateways()
