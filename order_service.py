"""
Order workflow: placing an order against a single supplier and moving it
through en cours -> on route -> arrived.

Every step of place_order runs in one session transaction. Stock is taken
with a conditional UPDATE (quantity >= requested), so two buyers racing for
the last units cannot both succeed; whichever update matches no row rolls
back its whole order.
"""
import logging
from collections import OrderedDict
from typing import List

from fastapi import HTTPException, status
from sqlalchemy import update
from sqlalchemy.orm import Session

import models
import notification_service
from realtime import EVENT_NEW_ORDER, EVENT_ORDER_STATUS, EventPublisher, client_room, supplier_room
from schema import OrderItemIn

logger = logging.getLogger(__name__)

NEXT_STATUS = {
    models.STATUS_PENDING: models.STATUS_ON_ROUTE,
    models.STATUS_ON_ROUTE: models.STATUS_ARRIVED,
}

STATUS_MESSAGES = {
    models.STATUS_ON_ROUTE: "Votre commande est en route",
    models.STATUS_ARRIVED: "Votre commande est arrivée",
}


def _bad_request(message: str):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def _insufficient(product: models.Product, requested: int):
    _bad_request(
        f"Insufficient quantity for product {product.name}. "
        f"Available: {product.quantity}, Requested: {requested}"
    )


def _merge_items(items: List[OrderItemIn]) -> "OrderedDict[int, int]":
    # the same product listed twice is one line with the summed quantity
    merged = OrderedDict()
    for item in items:
        merged[item.id] = merged.get(item.id, 0) + item.quantity
    return merged


def place_order(db: Session, buyer: models.User, items: List[OrderItemIn], publisher: EventPublisher) -> models.Commande:
    if not items:
        _bad_request("Products array is required and must not be empty")
    requested = _merge_items(items)

    products = []
    supplier_ids = set()
    for product_id, quantity in requested.items():
        product = db.get(models.Product, product_id)
        if not product:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Product {product_id} not found")
        if product.quantity < quantity:
            _insufficient(product, quantity)
        supplier_ids.add(product.supplier_id)
        products.append((product, quantity))

    if not supplier_ids:
        _bad_request("No supplier found for the products")
    if len(supplier_ids) > 1:
        _bad_request(
            "All products must be from the same supplier. "
            "Please group products by supplier and create separate orders."
        )
    supplier_id = supplier_ids.pop()

    total = round(sum(product.selling_price * quantity for product, quantity in products), 2)
    order = models.Commande(
        total=total,
        buyer_id=buyer.id,
        supplier_id=supplier_id,
        status=models.STATUS_PENDING,
        lines=[
            models.CommandeLine(
                product_id=product.id,
                name=product.name,
                price=product.selling_price,
                quantity=quantity,
            )
            for product, quantity in products
        ],
    )

    try:
        db.add(order)
        db.flush()

        for product, quantity in products:
            result = db.execute(
                update(models.Product)
                .where(models.Product.id == product.id, models.Product.quantity >= quantity)
                .values(quantity=models.Product.quantity - quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                db.refresh(product)
                _insufficient(product, quantity)

        notification = notification_service.create_notification(
            db,
            sender_id=buyer.id,
            receiver_id=supplier_id,
            kind=models.NOTIFICATION_NEW_ORDER,
            message=(
                f"Nouvelle commande de {buyer.first_name} {buyer.last_name} - "
                f"{len(products)} produit(s) - Total: {total:.2f} DA"
            ),
        )
        db.commit()
    except HTTPException:
        raise
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("Order %s placed by %s with supplier %s, total %.2f", order.id, buyer.id, supplier_id, total)

    notification_service.push(publisher, supplier_room(supplier_id), EVENT_NEW_ORDER, {
        "orderId": order.id,
        "total": order.total,
        "buyerName": buyer.full_name,
        "productsCount": len(order.lines),
        "createdAt": order.created_at,
        "notificationId": notification.id,
    })
    return order


def advance_status(db: Session, supplier_id: int, order_id: int, new_status: str, publisher: EventPublisher) -> models.Commande:
    if new_status not in models.ORDER_STATUSES:
        _bad_request("Invalid status. Must be 'en cours', 'on route', or 'arrived'")

    order = db.get(models.Commande, order_id)
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    if order.supplier_id != supplier_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the supplier can update order status")

    current = order.status
    if current == models.STATUS_ARRIVED:
        _bad_request("Order has already arrived and cannot be changed")
    if NEXT_STATUS[current] != new_status:
        _bad_request(f"Order status can only be changed from '{current}' to '{NEXT_STATUS[current]}'")

    result = db.execute(
        update(models.Commande)
        .where(models.Commande.id == order.id, models.Commande.status == current)
        .values(status=new_status, updated_at=models.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Order status was changed by another request")

    message = STATUS_MESSAGES[new_status]
    notification = notification_service.create_notification(
        db,
        sender_id=supplier_id,
        receiver_id=order.buyer_id,
        kind=models.NOTIFICATION_ORDER_STATUS,
        message=message,
    )
    db.commit()
    db.refresh(order)
    logger.info("Order %s moved from '%s' to '%s'", order.id, current, new_status)

    notification_service.push(publisher, client_room(order.buyer_id), EVENT_ORDER_STATUS, {
        "orderId": order.id,
        "status": new_status,
        "message": message,
        "notificationId": notification.id,
    })
    return order
