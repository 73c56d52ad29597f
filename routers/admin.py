import io
import logging
import math

import pandas as pd
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, aliased, joinedload, selectinload

import accounts
import analytics
import authentication
import database
import models
from schema import (
    AdminCreateIn, AdminProfileUpdateIn, AttachmentOut, PapierOut, PasswordUpdateIn, ProblemOut,
    SubscriptionCreateIn, SubscriptionOut, SubscriptionUpdateIn, UserOut, UserStatusIn, dump,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

ORDER_SORT_COLUMNS = {
    "createdAt": models.Commande.created_at,
    "updatedAt": models.Commande.updated_at,
    "total": models.Commande.total,
    "status": models.Commande.status,
}
USER_SORT_COLUMNS = {
    "createdAt": models.User.created_at,
    "firstName": models.User.first_name,
    "lastName": models.User.last_name,
    "email": models.User.email,
}


def _sorted(query, columns, sort_by: str, sort_order: str):
    column = columns.get(sort_by, columns["createdAt"])
    return query.order_by(column.asc() if sort_order == "asc" else column.desc())


def _pagination(page: int, limit: int, total: int):
    return {
        "currentPage": page,
        "totalPages": math.ceil(total / limit) or 1,
        "totalCount": total,
        "limit": limit,
    }


def _user_search(query, search: str):
    pattern = f"%{search.strip()}%"
    return query.filter(or_(
        models.User.first_name.ilike(pattern),
        models.User.last_name.ilike(pattern),
        models.User.email.ilike(pattern),
        models.User.phone.ilike(pattern),
    ))


# --- Dashboards ---
@router.get("/statistics")
def get_statistics(
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    return {"success": True, "data": analytics.admin_statistics(db)}


@router.get("/statistics/detailed")
def get_detailed_statistics(
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    return {"success": True, "data": analytics.detailed_statistics(db)}


# --- Orders ---
def _order_row(order: models.Commande):
    return {
        "id": order.id,
        "orderNumber": analytics.order_number(order.id),
        "customer": order.buyer.full_name if order.buyer else "Unknown",
        "customerEmail": order.buyer.email if order.buyer else "",
        "supplier": order.supplier.full_name if order.supplier else "Unknown",
        "supplierEmail": order.supplier.email if order.supplier else "",
        "products": [{"name": l.name, "quantity": l.quantity, "price": l.price} for l in order.lines],
        "productCount": len(order.lines),
        "totalAmount": order.total,
        "status": order.status,
        "createdAt": order.created_at,
        "updatedAt": order.updated_at,
    }


def _order_matches(row, needle: str) -> bool:
    return (
        needle in row["customer"].lower()
        or needle in row["customerEmail"].lower()
        or needle in row["supplier"].lower()
        or needle in row["supplierEmail"].lower()
        or needle in row["orderNumber"].lower()
        or any(needle in p["name"].lower() for p in row["products"])
    )


@router.get("/orders")
def list_orders(
    status_filter: str = Query(None, alias="status"),
    search: str = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    query = db.query(models.Commande).options(
        selectinload(models.Commande.lines),
        joinedload(models.Commande.buyer),
        joinedload(models.Commande.supplier),
    )
    if status_filter and status_filter != "all":
        query = query.filter(models.Commande.status == status_filter)
    query = _sorted(query, ORDER_SORT_COLUMNS, sortBy, sortOrder)

    offset = (page - 1) * limit
    if search and search.strip():
        # names live on the joined users and lines, so matching happens after formatting
        needle = search.strip().lower()
        rows = [row for row in (_order_row(o) for o in query.all()) if _order_matches(row, needle)]
        total = len(rows)
        rows = rows[offset:offset + limit]
    else:
        total = query.count()
        rows = [_order_row(o) for o in query.offset(offset).limit(limit).all()]

    status_counts = dict(
        db.query(models.Commande.status, func.count(models.Commande.id)).group_by(models.Commande.status).all()
    )
    return {
        "success": True,
        "data": {
            "orders": rows,
            "pagination": _pagination(page, limit, total),
            "filters": {"statusCounts": status_counts},
        },
    }


@router.get("/report/orders")
def export_orders_report(
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    buyer = aliased(models.User)
    supplier = aliased(models.User)
    items = (
        select(func.coalesce(func.sum(models.CommandeLine.quantity), 0))
        .where(models.CommandeLine.commande_id == models.Commande.id)
        .scalar_subquery()
    )
    query = (
        db.query(
            models.Commande.id.label("order_id"),
            models.Commande.status,
            models.Commande.total,
            items.label("items"),
            buyer.email.label("customer_email"),
            supplier.email.label("supplier_email"),
            models.Commande.created_at,
        )
        .join(buyer, models.Commande.buyer_id == buyer.id)
        .join(supplier, models.Commande.supplier_id == supplier.id)
        .order_by(models.Commande.created_at.desc(), models.Commande.id.desc())
        .statement
    )
    df = pd.read_sql(query, db.bind)
    df.insert(0, "order_number", df["order_id"].map(analytics.order_number))

    stream = io.StringIO()
    df.to_csv(stream, index=False)
    response = StreamingResponse(iter([stream.getvalue()]), media_type="text/csv")
    response.headers["Content-Disposition"] = "attachment; filename=orders_report.csv"
    return response


# --- Users ---
@router.get("/users")
def list_users(
    role: str = None,
    search: str = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    query = db.query(models.User).filter(models.User.role != models.ROLE_ADMIN)
    if role and role != "all":
        query = query.filter(models.User.role == role)
    if search and search.strip():
        query = _user_search(query, search)

    total = query.count()
    users = _sorted(query, USER_SORT_COLUMNS, sortBy, sortOrder).offset((page - 1) * limit).limit(limit).all()

    order_counts = {}
    if users:
        order_counts = dict(
            db.query(models.Commande.buyer_id, func.count(models.Commande.id))
            .filter(models.Commande.buyer_id.in_([u.id for u in users]))
            .group_by(models.Commande.buyer_id)
            .all()
        )
    role_counts = dict(
        db.query(models.User.role, func.count(models.User.id))
        .filter(models.User.role != models.ROLE_ADMIN)
        .group_by(models.User.role)
        .all()
    )

    rows = []
    for user in users:
        row = dump(UserOut, user)
        row["name"] = user.full_name
        row["ordersCount"] = order_counts.get(user.id, 0)
        rows.append(row)
    return {
        "success": True,
        "data": {
            "users": rows,
            "pagination": _pagination(page, limit, total),
            "filters": {"roleCounts": role_counts},
        },
    }


@router.put("/users/{user_id}/status")
def update_user_status(
    user_id: int,
    payload: UserStatusIn,
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    if user_id == token.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot change your own status")
    user = accounts.load_user(db, user_id)
    if user.role == models.ROLE_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot change status of admin users")
    user.status = payload.status
    db.commit()
    logger.info("Admin %s set user %s status to %s", token.id, user.id, payload.status)
    return {
        "success": True,
        "message": "User account has been activated" if payload.status else "User account has been blocked",
        "data": {"id": user.id, "status": user.status},
    }


# --- Admin accounts ---
@router.get("/admins")
def list_admins(
    search: str = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    query = db.query(models.User).filter(models.User.role == models.ROLE_ADMIN, models.User.id != token.id)
    if search and search.strip():
        query = _user_search(query, search)
    total = query.count()
    admins = _sorted(query, USER_SORT_COLUMNS, sortBy, sortOrder).offset((page - 1) * limit).limit(limit).all()
    return {
        "success": True,
        "data": {
            "admins": [dump(UserOut, a) for a in admins],
            "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
        },
    }


@router.post("/admins", status_code=status.HTTP_201_CREATED)
def create_admin(
    payload: AdminCreateIn,
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    accounts.ensure_email_free(db, payload.email)
    admin = models.User(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email.lower(),
        hashed_password=authentication.get_password_hash(payload.password),
        phone=payload.phone,
        address=payload.address,
        role=models.ROLE_ADMIN,
        status=False,
        payment_methods=[],
    )
    accounts.save_new_user(db, admin)
    logger.info("Admin %s created admin %s", token.id, admin.id)
    return {"success": True, "message": "Admin created successfully", "data": dump(UserOut, admin)}


@router.put("/admins/{admin_id}/status")
def update_admin_status(
    admin_id: int,
    payload: UserStatusIn,
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    if admin_id == token.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot change your own status")
    admin = db.get(models.User, admin_id)
    if not admin:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Admin not found")
    if admin.role != models.ROLE_ADMIN:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User is not an admin")
    admin.status = payload.status
    db.commit()
    db.refresh(admin)
    return {"success": True, "message": "Admin status updated successfully", "data": dump(UserOut, admin)}


# --- Subscriptions ---
def _subscription_row(subscription: models.Subscription, now):
    row = dump(SubscriptionOut, subscription)
    row["status"] = "active" if subscription.end > now else "ended"
    return row


@router.get("/subscriptions/users")
def list_users_without_subscription(
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    users = (
        db.query(models.User)
        .filter(models.User.status.is_(False), models.User.role != models.ROLE_ADMIN)
        .order_by(models.User.created_at.desc())
        .all()
    )
    return {"success": True, "data": {"users": [dump(UserOut, u) for u in users]}}


@router.post("/subscriptions", status_code=status.HTTP_201_CREATED)
def create_subscription(
    payload: SubscriptionCreateIn,
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    user = accounts.load_user(db, payload.id_user)
    subscription = models.Subscription(
        user_id=user.id,
        type=payload.type,
        price=payload.price,
        start=payload.start,
        end=payload.end,
        status=True,
    )
    db.add(subscription)
    user.status = True
    db.commit()
    db.refresh(subscription)
    logger.info("Subscription %s created for user %s", subscription.id, user.id)
    return {"success": True, "message": "Subscription created successfully", "data": dump(SubscriptionOut, subscription)}


@router.get("/subscriptions")
def list_subscriptions(
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    subscriptions = (
        db.query(models.Subscription)
        .options(joinedload(models.Subscription.user))
        .order_by(models.Subscription.created_at.desc(), models.Subscription.id.desc())
        .all()
    )
    now = models.utcnow()
    return {"success": True, "data": {"subscriptions": [_subscription_row(s, now) for s in subscriptions]}}


@router.put("/subscriptions/{subscription_id}")
def update_subscription(
    subscription_id: int,
    payload: SubscriptionUpdateIn,
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    subscription = db.get(models.Subscription, subscription_id)
    if not subscription:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    if subscription.end < models.utcnow():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot update ended subscription")

    start = payload.start or subscription.start
    end = payload.end or subscription.end
    if end <= start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="End date must be after start date")

    if payload.type:
        subscription.type = payload.type
    if payload.price is not None:
        subscription.price = payload.price
    subscription.start = start
    subscription.end = end
    db.commit()
    db.refresh(subscription)
    return {"success": True, "message": "Subscription updated successfully", "data": dump(SubscriptionOut, subscription)}


@router.get("/subscriptions/users/{user_id}/papers")
def get_user_papers(
    user_id: int,
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    papier = db.query(models.Papier).filter(models.Papier.user_id == user_id).first()
    return {"success": True, "data": {"papers": dump(PapierOut, papier) if papier else None}}


@router.get("/subscriptions/users/{user_id}/documents")
def get_user_documents(
    user_id: int,
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    attachment = db.query(models.Attachment).filter(models.Attachment.user_id == user_id).first()
    return {"success": True, "data": {"documents": dump(AttachmentOut, attachment) if attachment else None}}


# --- Own profile ---
@router.get("/profile")
def get_admin_profile(
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    return {"success": True, "data": dump(UserOut, accounts.load_user(db, token.id))}


@router.put("/profile")
def update_admin_profile(
    payload: AdminProfileUpdateIn,
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    admin = accounts.load_user(db, token.id)
    if payload.email and payload.email.lower() != admin.email:
        accounts.ensure_email_free(db, payload.email, exclude_user_id=admin.id)
        admin.email = payload.email.lower()
    for key, value in payload.model_dump(exclude_none=True, exclude={"email"}).items():
        setattr(admin, key, value)
    db.commit()
    db.refresh(admin)
    return {"success": True, "message": "Profile updated successfully", "data": dump(UserOut, admin)}


@router.put("/password")
def update_admin_password(
    payload: PasswordUpdateIn,
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    accounts.change_password(db, accounts.load_user(db, token.id), payload)
    return {"success": True, "message": "Password updated successfully"}


@router.post("/profile-image")
def upload_admin_profile_image(
    image: UploadFile = File(...),
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    attachment = accounts.save_profile_image(db, accounts.load_user(db, token.id), image)
    return {"success": True, "message": "Profile image uploaded successfully", "data": dump(AttachmentOut, attachment)}


@router.get("/profile-image")
def get_admin_profile_image(
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    return {"success": True, "data": dump(AttachmentOut, accounts.get_profile_image(db, token.id))}


# --- Support tickets ---
@router.get("/problems")
def list_problems(
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    problems = db.query(models.Problem).order_by(models.Problem.created_at.desc(), models.Problem.id.desc()).all()
    return {"success": True, "data": [dump(ProblemOut, p) for p in problems]}


@router.put("/problems/{problem_id}/read")
def mark_problem_read(
    problem_id: int,
    token: authentication.TokenIdentity = Depends(authentication.admin_only),
    db: Session = Depends(database.obtain_db_session),
):
    problem = db.get(models.Problem, problem_id)
    if not problem:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Problem not found")
    problem.is_read = True
    db.commit()
    db.refresh(problem)
    return {"success": True, "message": "Problem marked as read", "data": dump(ProblemOut, problem)}
