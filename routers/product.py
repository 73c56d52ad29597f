import io
import logging
import zipfile
from typing import List, Optional

import pandas as pd
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import ValidationError
from sqlalchemy import case
from sqlalchemy.orm import Session, joinedload

import authentication
import database
import models
import uploads
from config import settings
from schema import ProductIn, ProductOut, ProductUpdateIn, PublicProductOut, describe_errors, dump, validate_form

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["Products"])

MAX_IMAGES = 10
EXCEL_COLUMNS = {
    "name": "name",
    "purchasePrice": "purchase_price",
    "sellingPrice": "selling_price",
    "quantity": "quantity",
    "category": "category",
    "deliveryTime": "delivery_time",
    "brand": "brand",
    "productType": "product_type",
}
TEXT_FIELDS = {"name", "category", "delivery_time", "brand", "product_type"}


def _store_media(images: Optional[List[UploadFile]], video: Optional[UploadFile], user_id: int):
    images = [f for f in (images or []) if f.filename]
    if len(images) > MAX_IMAGES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"You can upload at most {MAX_IMAGES} images")
    if video is not None and not video.filename:
        video = None

    # reject the whole request before writing anything
    for image in images:
        uploads.read_upload(image, uploads.IMAGE, settings.MAX_PRODUCT_MEDIA_SIZE, "images")
        image.file.seek(0)
    if video:
        uploads.read_upload(video, uploads.VIDEO, settings.MAX_PRODUCT_MEDIA_SIZE, "video")
        video.file.seek(0)

    image_paths = [
        uploads.save_upload(image, uploads.IMAGE, settings.MAX_PRODUCT_MEDIA_SIZE, "products", user_id, "images")
        for image in images
    ]
    video_path = None
    if video:
        video_path = uploads.save_upload(video, uploads.VIDEO, settings.MAX_PRODUCT_MEDIA_SIZE, "products", user_id, "video")
    return image_paths, video_path


def _owned_product(db: Session, product_id: int, supplier_id: int, action: str) -> models.Product:
    product = db.get(models.Product, product_id)
    if not product:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    if product.supplier_id != supplier_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"You can only {action} your own products")
    return product


# --- Public catalog ---
@router.get("/public")
def list_public_products(
    identity: Optional[authentication.TokenIdentity] = Depends(authentication.optional_identity),
    db: Session = Depends(database.obtain_db_session),
):
    query = db.query(models.Product).options(joinedload(models.Product.supplier))
    if identity and identity.role == models.ROLE_CLIENT and identity.labo_type:
        query = query.filter(models.Product.product_type == identity.labo_type)
    in_stock_first = case((models.Product.quantity > 0, 0), else_=1)
    products = query.order_by(in_stock_first, models.Product.created_at.desc(), models.Product.id.desc()).all()
    return {"success": True, "data": {"products": [dump(PublicProductOut, p) for p in products]}}


@router.get("/public/{product_id}")
def get_public_product(
    product_id: int,
    identity: Optional[authentication.TokenIdentity] = Depends(authentication.optional_identity),
    db: Session = Depends(database.obtain_db_session),
):
    product = db.get(models.Product, product_id)
    if not product:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    if (identity and identity.role == models.ROLE_CLIENT and identity.labo_type
            and product.product_type != identity.labo_type):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Ce produit n'est pas disponible pour votre type de laboratoire",
        )
    if product.quantity <= 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product is out of stock")
    return {"success": True, "data": dump(PublicProductOut, product)}


# --- Supplier catalog management ---
@router.post("/", status_code=status.HTTP_201_CREATED)
def create_product(
    name: Optional[str] = Form(None),
    purchasePrice: Optional[str] = Form(None),
    sellingPrice: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    deliveryTime: Optional[str] = Form(None),
    brand: Optional[str] = Form(None),
    productType: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    video: Optional[UploadFile] = File(None),
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
):
    payload = validate_form(
        ProductIn,
        name=name, purchase_price=purchasePrice, selling_price=sellingPrice, quantity=quantity,
        category=category, delivery_time=deliveryTime, brand=brand, product_type=productType,
    )
    image_paths, video_path = _store_media(images, video, token.id)

    product = models.Product(**payload.model_dump(), images=image_paths, video=video_path, supplier_id=token.id)
    db.add(product)
    db.commit()
    db.refresh(product)
    logger.info("Supplier %s created product %s", token.id, product.id)
    return {"success": True, "message": "Product created successfully", "data": dump(ProductOut, product)}


def _read_sheet(content: bytes) -> pd.DataFrame:
    try:
        return pd.read_excel(io.BytesIO(content), dtype=object)
    except (ValueError, OSError, KeyError, zipfile.BadZipFile) as e:
        logger.warning("Unreadable Excel upload: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Excel file is empty or invalid")


def _row_values(row, column_map):
    values = {}
    for column, field in column_map.items():
        value = row[column]
        if pd.isna(value):
            value = None
        elif field in TEXT_FIELDS:
            value = str(value).strip()
        values[field] = value
    return values


@router.post("/upload-excel", status_code=status.HTTP_201_CREATED)
def upload_products_excel(
    file: UploadFile = File(...),
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
):
    content, _ = uploads.read_upload(file, uploads.EXCEL, settings.MAX_EXCEL_SIZE, "file")
    df = _read_sheet(content)
    if df.empty:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Excel file is empty or invalid")

    headers = {str(column).strip().lower(): column for column in df.columns}
    column_map = {}
    missing = []
    for expected, field in EXCEL_COLUMNS.items():
        column = headers.get(expected.lower())
        if column is None:
            missing.append(expected)
        else:
            column_map[column] = field
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": f"Missing required columns: {', '.join(missing)}",
                "expectedColumns": list(EXCEL_COLUMNS),
            },
        )

    products = []
    errors = []
    for index, row in df.iterrows():
        # header is spreadsheet row 1
        row_number = index + 2
        try:
            payload = ProductIn(**_row_values(row, column_map))
        except ValidationError as e:
            errors.append(f"Row {row_number}: {'; '.join(describe_errors(e.errors()))}")
            continue
        products.append(models.Product(**payload.model_dump(), images=[], video=None, supplier_id=token.id))

    if not products:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "No valid products to import", "errors": errors},
        )

    db.add_all(products)
    db.commit()
    logger.info("Supplier %s imported %d product(s) from Excel", token.id, len(products))
    body = {
        "success": True,
        "message": f"Successfully imported {len(products)} product(s)",
        "data": {
            "imported": len(products),
            "total": len(df.index),
            "errors": len(errors),
            "products": [dump(ProductOut, p) for p in products],
        },
    }
    if errors:
        body["errorDetails"] = errors
    return body


@router.get("/")
def list_own_products(
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
):
    products = (
        db.query(models.Product)
        .filter(models.Product.supplier_id == token.id)
        .order_by(models.Product.created_at.desc(), models.Product.id.desc())
        .all()
    )
    return {"success": True, "data": {"products": [dump(ProductOut, p) for p in products]}}


@router.put("/{product_id}")
def update_product(
    product_id: int,
    name: Optional[str] = Form(None),
    purchasePrice: Optional[str] = Form(None),
    sellingPrice: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    deliveryTime: Optional[str] = Form(None),
    brand: Optional[str] = Form(None),
    productType: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    video: Optional[UploadFile] = File(None),
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
):
    product = _owned_product(db, product_id, token.id, "update")
    payload = validate_form(
        ProductUpdateIn,
        name=name, purchase_price=purchasePrice, selling_price=sellingPrice, quantity=quantity,
        category=category, delivery_time=deliveryTime, brand=brand, product_type=productType,
    )
    changes = payload.model_dump(exclude_none=True)
    purchase = changes.get("purchase_price", product.purchase_price)
    selling = changes.get("selling_price", product.selling_price)
    if selling < purchase:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Selling price must be greater than or equal to purchase price",
        )

    image_paths, video_path = _store_media(images, video, token.id)
    replaced = []
    for key, value in changes.items():
        setattr(product, key, value)
    if image_paths:
        replaced.extend(product.images or [])
        product.images = image_paths
    if video_path:
        replaced.append(product.video)
        product.video = video_path
    db.commit()
    db.refresh(product)
    for path in replaced:
        uploads.remove_upload(path)
    return {"success": True, "message": "Product updated successfully", "data": dump(ProductOut, product)}


@router.delete("/{product_id}")
def delete_product(
    product_id: int,
    token: authentication.TokenIdentity = Depends(authentication.supplier_only),
    db: Session = Depends(database.obtain_db_session),
):
    product = _owned_product(db, product_id, token.id, "delete")
    media = list(product.images or []) + [product.video]
    db.delete(product)
    db.commit()
    for path in media:
        uploads.remove_upload(path)
    logger.info("Supplier %s deleted product %s", token.id, product_id)
    return {"success": True, "message": "Product deleted successfully"}
