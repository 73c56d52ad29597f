from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session, joinedload, selectinload

import accounts
import analytics
import authentication
import database
import models
import order_service
from realtime import EventPublisher, get_publisher
from schema import OrderCreateIn, OrderOut, OrderStatusIn, dump

router = APIRouter(prefix="/commandes", tags=["Orders"])


def _orders_query(db: Session):
    return db.query(models.Commande).options(
        selectinload(models.Commande.lines),
        joinedload(models.Commande.buyer),
        joinedload(models.Commande.supplier),
    )


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreateIn,
    token: authentication.TokenIdentity = Depends(authentication.client_only),
    db: Session = Depends(database.obtain_db_session),
    publisher: EventPublisher = Depends(get_publisher),
):
    buyer = accounts.load_user(db, token.id)
    order = order_service.place_order(db, buyer, payload.products, publisher)
    return {
        "success": True,
        "message": "Order created successfully",
        "data": dump(OrderOut, order),
        "orderId": order.id,
        "supplierId": order.supplier_id,
    }


@router.get("/client")
def list_client_orders(
    token: authentication.TokenIdentity = Depends(authentication.client_only),
    db: Session = Depends(database.obtain_db_session),
):
    orders = (
        _orders_query(db)
        .filter(models.Commande.buyer_id == token.id)
        .order_by(models.Commande.created_at.desc(), models.Commande.id.desc())
        .all()
    )
    return {"success": True, "data": {"orders": [dump(OrderOut, o) for o in orders]}}


@router.get("/supplier")
def list_supplier_orders(
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
):
    orders = (
        _orders_query(db)
        .filter(models.Commande.supplier_id == token.id)
        .order_by(models.Commande.created_at.desc(), models.Commande.id.desc())
        .all()
    )
    return {"success": True, "data": {"orders": [dump(OrderOut, o) for o in orders]}}


@router.get("/supplier/statistics")
def supplier_statistics(
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
):
    return {"success": True, "data": analytics.supplier_statistics(db, token.id)}


@router.put("/{order_id}/status")
def update_order_status(
    order_id: int,
    payload: OrderStatusIn,
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
    publisher: EventPublisher = Depends(get_publisher),
):
    order = order_service.advance_status(db, token.id, order_id, payload.status, publisher)
    return {"success": True, "message": "Order status updated successfully", "data": dump(OrderOut, order)}
