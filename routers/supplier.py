from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status
from sqlalchemy.orm import Session

import accounts
import analytics
import authentication
import database
import models
import uploads
from config import settings
from schema import (
    AttachmentOut, PapierOut, PasswordUpdateIn, SupplierOut, SupplierProfileUpdateIn, SupplierRegisterIn, UserOut,
    dump,
)

router = APIRouter(prefix="/supplier", tags=["Supplier"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register_supplier(payload: SupplierRegisterIn, db: Session = Depends(database.obtain_db_session)):
    user = accounts.create_account(db, payload, role=models.ROLE_SUPPLIER)
    return {
        "success": True,
        "message": "Supplier registered successfully",
        "data": dump(UserOut, user),
        "token": authentication.token_for_user(user),
    }


@router.post("/documents")
def upload_documents(
    response: Response,
    Tax_number: UploadFile = File(...),
    identity: UploadFile = File(...),
    commercial_register: UploadFile = File(...),
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
):
    user = accounts.load_user(db, token.id)
    stored = {}
    for field, file in (("Tax_number", Tax_number), ("identity", identity), ("commercial_register", commercial_register)):
        uploads.read_upload(file, uploads.PDF, settings.MAX_DOCUMENT_SIZE, field)
        file.file.seek(0)
    # every file is checked before any of them is written
    for field, file in (("Tax_number", Tax_number), ("identity", identity), ("commercial_register", commercial_register)):
        stored[field] = uploads.save_upload(file, uploads.PDF, settings.MAX_DOCUMENT_SIZE, "documents", user.id, field)

    papier, created = accounts.store_papier(
        db, user, models.ROLE_SUPPLIER,
        identity=stored["identity"],
        tax_number=stored["Tax_number"],
        commercial_register=stored["commercial_register"],
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return {
        "success": True,
        "message": "Documents uploaded successfully" if created else "Documents updated successfully",
        "data": dump(PapierOut, papier),
    }


@router.get("/documents")
def get_documents(
    token: authentication.TokenIdentity = Depends(authentication.verify_user_session),
    db: Session = Depends(database.obtain_db_session),
):
    papier = db.query(models.Papier).filter(models.Papier.user_id == token.id).first()
    if not papier:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No documents found")
    return {"success": True, "data": dump(PapierOut, papier)}


@router.post("/profile-image")
def upload_profile_image(
    image: UploadFile = File(...),
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
):
    attachment = accounts.save_profile_image(db, accounts.load_user(db, token.id), image)
    return {"success": True, "message": "Profile image uploaded successfully", "data": dump(AttachmentOut, attachment)}


@router.get("/profile-image")
def get_profile_image(
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
):
    return {"success": True, "data": dump(AttachmentOut, accounts.get_profile_image(db, token.id))}


@router.put("/profile")
def update_profile(
    payload: SupplierProfileUpdateIn,
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
):
    user = accounts.load_user(db, token.id)
    if payload.email and payload.email.lower() != user.email:
        accounts.ensure_email_free(db, payload.email, exclude_user_id=user.id)

    rip_post = payload.rip_post if payload.rip_post is not None else (user.rip_post or "")
    rip_bank = payload.rip_bank if payload.rip_bank is not None else (user.rip_bank or "")
    methods = payload.methode_payment if payload.methode_payment is not None else (user.payment_methods or [])
    if "by post" in methods and not rip_post:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="RIP Post is required when 'by post' payment method is selected",
        )
    if "bank" in methods and not rip_bank:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="RIP Bank is required when 'bank' payment method is selected",
        )

    updates = payload.model_dump(exclude_none=True, exclude={"methode_payment", "email"})
    for key, value in updates.items():
        setattr(user, key, value)
    if payload.email:
        user.email = payload.email.lower()
    if payload.methode_payment is not None:
        user.payment_methods = list(dict.fromkeys(payload.methode_payment))
    db.commit()
    db.refresh(user)
    return {"success": True, "message": "Profile updated successfully", "data": dump(SupplierOut, user)}


@router.put("/password")
def update_password(
    payload: PasswordUpdateIn,
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
):
    accounts.change_password(db, accounts.load_user(db, token.id), payload)
    return {"success": True, "message": "Password updated successfully"}


@router.get("/{supplier_id}")
def get_supplier_details(supplier_id: int, db: Session = Depends(database.obtain_db_session)):
    supplier = db.get(models.User, supplier_id)
    if not supplier or supplier.role != models.ROLE_SUPPLIER:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found")

    attachment = db.query(models.Attachment).filter(models.Attachment.user_id == supplier.id).first()
    products = (
        db.query(models.Product)
        .filter(models.Product.supplier_id == supplier.id, models.Product.quantity > 0)
        .order_by(models.Product.created_at.desc(), models.Product.id.desc())
        .limit(20)
        .all()
    )
    card = dump(SupplierOut, supplier)
    card["profileImage"] = attachment.image if attachment else None
    stats = analytics.supplier_public_stats(db, supplier.id)
    stats["displayedProducts"] = len(products)
    return {
        "success": True,
        "data": {
            "supplier": card,
            "stats": stats,
            "products": [
                {
                    "id": p.id,
                    "name": p.name,
                    "price": p.selling_price,
                    "quantity": p.quantity,
                    "category": p.category,
                    "brand": p.brand,
                    "productType": p.product_type,
                    "images": p.images or [],
                    "createdAt": p.created_at,
                }
                for p in products
            ],
        },
    }
