import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

import authentication
import database
import models
import uploads
from config import settings
from schema import ContactOut, PaymentIn, PaymentOut, dump, validate_form

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

TOTAL_TOLERANCE = 0.01

DUPLICATE_PAYMENT = "Payment already exists for this commande"


def _payment_payload(payment: models.Payment):
    data = dump(PaymentOut, payment)
    if payment.owner:
        data["owner"] = dump(ContactOut, payment.owner)
    return data


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_payment(
    id_commande: Optional[str] = Form(None),
    total: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    token: authentication.TokenIdentity = Depends(authentication.client_only),
    db: Session = Depends(database.obtain_db_session),
):
    if not id_commande or total is None or total == "":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Commande ID and total are required")
    payload = validate_form(PaymentIn, id_commande=id_commande, total=total)
    if image is None or not image.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment image is required")

    commande = db.get(models.Commande, payload.id_commande)
    if not commande:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Commande not found")
    if commande.buyer_id != token.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only create payment for your own orders")
    if db.query(models.Payment).filter(models.Payment.commande_id == commande.id).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_PAYMENT)
    if abs(commande.total - payload.total) > TOTAL_TOLERANCE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Total does not match commande total. "
                f"Commande total: {commande.total} DA, Provided: {payload.total} DA"
            ),
        )

    path = uploads.save_upload(
        image, uploads.PDF, settings.MAX_PAYMENT_PROOF_SIZE, "payments", token.id, "image"
    )
    payment = models.Payment(commande_id=commande.id, owner_id=token.id, total=payload.total, image=path)
    db.add(payment)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        uploads.remove_upload(path)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_PAYMENT)
    db.refresh(payment)
    logger.info("Payment %s recorded for order %s", payment.id, commande.id)
    return {"success": True, "message": "Payment created successfully", "data": dump(PaymentOut, payment)}


@router.get("/commande/{commande_id}")
def get_payment_by_commande(
    commande_id: int,
    token: authentication.TokenIdentity = Depends(authentication.verify_user_session),
    db: Session = Depends(database.obtain_db_session),
):
    commande = db.get(models.Commande, commande_id)
    if not commande:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Commande not found")
    if token.id not in (commande.buyer_id, commande.supplier_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only view payment for your own orders")

    payment = (
        db.query(models.Payment)
        .options(joinedload(models.Payment.owner))
        .filter(models.Payment.commande_id == commande_id)
        .first()
    )
    if not payment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found for this commande")
    return {"success": True, "data": _payment_payload(payment)}


@router.get("/user")
def list_user_payments(
    token: authentication.TokenIdentity = Depends(authentication.client_only),
    db: Session = Depends(database.obtain_db_session),
):
    payments = (
        db.query(models.Payment)
        .filter(models.Payment.owner_id == token.id)
        .order_by(models.Payment.created_at.desc(), models.Payment.id.desc())
        .all()
    )
    return {"success": True, "data": {"payments": [dump(PaymentOut, p) for p in payments]}}
