import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import authentication
import database
import models
import realtime
from config import settings
from routers import admin, client, commande, notification, payment, product, supplier
from schema import describe_errors

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

models.Base.metadata.create_all(bind=database.db_engine)
os.makedirs(settings.UPLOAD_DIR, exist_ok=True)


def seed_admin():
    if not (settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD):
        return
    db = database.LocalSession()
    try:
        email = settings.ADMIN_EMAIL.lower()
        if db.query(models.User).filter(models.User.email == email).first():
            return
        db.add(models.User(
            first_name="Admin",
            last_name="Market Lab",
            email=email,
            hashed_password=authentication.get_password_hash(settings.ADMIN_PASSWORD),
            phone="0000000000",
            address="Market Lab",
            role=models.ROLE_ADMIN,
            status=True,
            payment_methods=[],
        ))
        db.commit()
        logger.info("Bootstrap admin %s created", email)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s v%s", settings.PROJECT_NAME, settings.VERSION)
    seed_admin()
    yield
    logger.info("Shutting down %s", settings.PROJECT_NAME)


app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)
app.state.room_hub = realtime.RoomHub()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# error envelope
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = {"success": False}
    if isinstance(exc.detail, dict):
        body.update(exc.detail)
        body.setdefault("message", "Request failed")
    else:
        body["message"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": "Validation error", "errors": describe_errors(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "Internal server error"},
    )


# basic info
@app.get("/", tags=["System"])
def basic_info():
    return {
        "app_name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "realtime": "/ws",
        "docs": "/docs",
    }


# app health
@app.get("/health", tags=["System"])
def health_status(db: Session = Depends(database.obtain_db_session)):
    health_report = {
        "app_name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "server_time": datetime.now(timezone.utc).isoformat(),
        "services": {
            "api": "online",
            "database": "unknown"
        }
    }

    try:
        db.execute(text("SELECT 1"))
        health_report["services"]["database"] = "online"
        return health_report
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        health_report["services"]["database"] = "offline"
        health_report["message"] = "Database unavailable"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=health_report
        )


app.include_router(client.router)
app.include_router(supplier.router)
app.include_router(product.router)
app.include_router(commande.router)
app.include_router(payment.router)
app.include_router(notification.router)
app.include_router(admin.router)
app.include_router(realtime.router)
app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")
