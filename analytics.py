"""
Aggregation queries behind the admin and supplier dashboards.

Nothing is materialized: every call recomputes from the raw tables.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List

from sqlalchemy import extract, func
from sqlalchemy.orm import Session, joinedload

import models


def month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def previous_month_start(moment: datetime) -> datetime:
    return month_start(month_start(moment) - timedelta(days=1))


def growth_percentage(current: float, previous: float) -> float:
    if previous > 0:
        return round((current - previous) / previous * 100, 2)
    return 0


def order_number(order_id: int) -> str:
    return f"ORD-{str(order_id).zfill(8)[-8:]}"


def _revenue_between(db: Session, start: datetime, end: datetime = None, supplier_id: int = None):
    query = db.query(func.coalesce(func.sum(models.Commande.total), 0.0), func.count(models.Commande.id))
    query = query.filter(models.Commande.created_at >= start)
    if end is not None:
        query = query.filter(models.Commande.created_at < end)
    if supplier_id is not None:
        query = query.filter(models.Commande.supplier_id == supplier_id)
    revenue, count = query.one()
    return float(revenue), count


def recent_order_summary(order: models.Commande) -> Dict[str, Any]:
    return {
        "id": order.id,
        "customer": order.buyer.full_name if order.buyer else "Unknown",
        "supplier": order.supplier.full_name if order.supplier else "Unknown",
        "productCount": len(order.lines),
        "amount": order.total,
        "status": order.status,
        "date": order.created_at,
    }


def admin_statistics(db: Session) -> Dict[str, Any]:
    total_revenue = db.query(func.coalesce(func.sum(models.Commande.total), 0.0)).scalar()
    users_by_role = dict(
        db.query(models.User.role, func.count(models.User.id)).group_by(models.User.role).all()
    )

    recent_orders = (
        db.query(models.Commande)
        .options(joinedload(models.Commande.buyer), joinedload(models.Commande.supplier))
        .order_by(models.Commande.created_at.desc(), models.Commande.id.desc())
        .limit(10)
        .all()
    )

    now = models.utcnow()
    current_start = month_start(now)
    previous_start = previous_month_start(now)
    current_revenue, current_orders = _revenue_between(db, current_start)
    previous_revenue, previous_orders = _revenue_between(db, previous_start, current_start)

    return {
        "totalRevenue": float(total_revenue),
        "totalUsers": sum(users_by_role.get(role, 0) for role in models.ROLES),
        "totalClients": users_by_role.get(models.ROLE_CLIENT, 0),
        "totalSuppliers": users_by_role.get(models.ROLE_SUPPLIER, 0),
        "totalOrders": db.query(func.count(models.Commande.id)).scalar(),
        "totalProducts": db.query(func.count(models.Product.id)).scalar(),
        "recentOrders": [recent_order_summary(order) for order in recent_orders],
        "growth": {
            "revenue": {
                "current": current_revenue,
                "previous": previous_revenue,
                "percentage": growth_percentage(current_revenue, previous_revenue),
            },
            "orders": {
                "current": current_orders,
                "previous": previous_orders,
                "percentage": growth_percentage(current_orders, previous_orders),
            },
        },
    }


def detailed_statistics(db: Session) -> Dict[str, Any]:
    order_year = extract("year", models.Commande.created_at)
    order_month = extract("month", models.Commande.created_at)
    order_day = extract("day", models.Commande.created_at)

    monthly = (
        db.query(order_year, order_month, func.sum(models.Commande.total), func.count(models.Commande.id))
        .group_by(order_year, order_month)
        .order_by(order_year.desc(), order_month.desc())
        .limit(12)
        .all()
    )
    monthly.reverse()

    since = models.utcnow() - timedelta(days=30)
    daily = (
        db.query(order_year, order_month, order_day, func.sum(models.Commande.total), func.count(models.Commande.id))
        .filter(models.Commande.created_at >= since)
        .group_by(order_year, order_month, order_day)
        .order_by(order_year, order_month, order_day)
        .all()
    )

    by_status = (
        db.query(models.Commande.status, func.count(models.Commande.id), func.sum(models.Commande.total))
        .group_by(models.Commande.status)
        .all()
    )
    by_role = db.query(models.User.role, func.count(models.User.id)).group_by(models.User.role).all()
    by_user_status = db.query(models.User.status, func.count(models.User.id)).group_by(models.User.status).all()

    category_count = func.count(models.Product.id)
    by_category = (
        db.query(models.Product.category, category_count)
        .group_by(models.Product.category)
        .order_by(category_count.desc())
        .limit(10)
        .all()
    )
    by_type = (
        db.query(models.Product.product_type, func.count(models.Product.id))
        .group_by(models.Product.product_type)
        .all()
    )

    supplier_revenue = func.sum(models.Commande.total)
    top_suppliers = (
        db.query(
            models.User.id, models.User.first_name, models.User.last_name,
            supplier_revenue, func.count(models.Commande.id),
        )
        .join(models.Commande, models.Commande.supplier_id == models.User.id)
        .group_by(models.User.id, models.User.first_name, models.User.last_name)
        .order_by(supplier_revenue.desc())
        .limit(10)
        .all()
    )

    sold_quantity = func.sum(models.CommandeLine.quantity)
    top_products = (
        db.query(
            models.CommandeLine.product_id,
            func.max(models.CommandeLine.name),
            sold_quantity,
            func.sum(models.CommandeLine.price * models.CommandeLine.quantity),
        )
        .group_by(models.CommandeLine.product_id)
        .order_by(sold_quantity.desc())
        .limit(10)
        .all()
    )

    return {
        "monthlyRevenue": [
            {"month": f"{int(month)}/{int(year)}", "revenue": float(revenue), "orders": count}
            for year, month, revenue, count in monthly
        ],
        "dailyRevenue": [
            {"date": f"{int(day)}/{int(month)}/{int(year)}", "revenue": float(revenue), "orders": count}
            for year, month, day, revenue, count in daily
        ],
        "ordersByStatus": [
            {"status": order_status, "count": count, "revenue": float(revenue or 0)}
            for order_status, count, revenue in by_status
        ],
        "usersByRole": [{"role": role, "count": count} for role, count in by_role],
        "usersByStatus": [
            {"status": "Actif" if active else "Inactif", "count": count} for active, count in by_user_status
        ],
        "productsByCategory": [{"category": category, "count": count} for category, count in by_category],
        "productsByType": [{"type": product_type, "count": count} for product_type, count in by_type],
        "topSuppliers": [
            {
                "id": supplier_id,
                "supplierName": f"{first_name} {last_name}",
                "totalRevenue": float(revenue),
                "orderCount": count,
            }
            for supplier_id, first_name, last_name, revenue, count in top_suppliers
        ],
        "topProducts": [
            {"id": product_id, "name": name, "totalQuantity": quantity, "totalRevenue": float(revenue)}
            for product_id, name, quantity, revenue in top_products
        ],
    }


def supplier_statistics(db: Session, supplier_id: int) -> Dict[str, Any]:
    orders: List[models.Commande] = (
        db.query(models.Commande)
        .options(joinedload(models.Commande.buyer), joinedload(models.Commande.lines))
        .filter(models.Commande.supplier_id == supplier_id)
        .order_by(models.Commande.created_at.desc(), models.Commande.id.desc())
        .all()
    )

    now = models.utcnow()
    last_30 = now - timedelta(days=30)
    previous_30 = now - timedelta(days=60)
    recent_count = sum(1 for o in orders if o.created_at >= last_30)
    previous_count = sum(1 for o in orders if previous_30 <= o.created_at < last_30)
    if previous_count > 0:
        orders_growth = round((recent_count - previous_count) / previous_count * 100, 1)
    else:
        orders_growth = 100.0 if recent_count > 0 else 0.0

    return {
        "totalRevenue": round(sum(o.total for o in orders), 2),
        "totalProductsSold": sum(line.quantity for o in orders for line in o.lines),
        "totalOrders": len(orders),
        "totalClients": len({o.buyer_id for o in orders}),
        "ordersByStatus": {
            order_status: sum(1 for o in orders if o.status == order_status)
            for order_status in models.ORDER_STATUSES
        },
        "recentOrders": [
            {
                "id": o.id,
                "total": o.total,
                "status": o.status,
                "productsCount": len(o.lines),
                "buyer": {
                    "firstName": o.buyer.first_name,
                    "lastName": o.buyer.last_name,
                    "email": o.buyer.email,
                } if o.buyer else None,
                "createdAt": o.created_at,
            }
            for o in orders[:5]
        ],
        "ordersGrowth": orders_growth,
    }


def supplier_public_stats(db: Session, supplier_id: int) -> Dict[str, Any]:
    revenue, orders = db.query(
        func.coalesce(func.sum(models.Commande.total), 0.0), func.count(models.Commande.id)
    ).filter(models.Commande.supplier_id == supplier_id).one()
    products = db.query(func.count(models.Product.id)).filter(models.Product.supplier_id == supplier_id).scalar()
    return {"totalProducts": products, "totalOrders": orders, "totalRevenue": float(revenue)}
