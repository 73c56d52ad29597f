from datetime import datetime, timezone
from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Index, Integer, JSON, String, Text,
)
from sqlalchemy.orm import relationship
from database import Base

ROLE_CLIENT = "client"
ROLE_SUPPLIER = "supplier"
ROLE_ADMIN = "admin"
ROLES = (ROLE_CLIENT, ROLE_SUPPLIER, ROLE_ADMIN)

LABO_TYPES = ("Labo médical", "labo d'ana pathologies")
PAYMENT_METHODS = ("cash", "by post", "bank")

STATUS_PENDING = "en cours"
STATUS_ON_ROUTE = "on route"
STATUS_ARRIVED = "arrived"
ORDER_STATUSES = (STATUS_PENDING, STATUS_ON_ROUTE, STATUS_ARRIVED)

NOTIFICATION_NEW_ORDER = "new_order"
NOTIFICATION_ORDER_STATUS = "order_status"
NOTIFICATION_SYSTEM = "system"


def utcnow():
    # naive UTC, sqlite drops tzinfo on the way back
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    phone = Column(String(30), nullable=False)
    address = Column(String(200), nullable=False)
    role = Column(String(20), nullable=False, default=ROLE_CLIENT, index=True)
    status = Column(Boolean, nullable=False, default=False)
    labo_type = Column(String(50), nullable=True)
    rip_post = Column(String(100), default="")
    rip_bank = Column(String(100), default="")
    payment_methods = Column(JSON, default=list)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    products = relationship("Product", back_populates="supplier")
    subscriptions = relationship("Subscription", back_populates="user", order_by="Subscription.end")

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("selling_price >= purchase_price", name="ck_product_margin"),
        CheckConstraint("quantity >= 0", name="ck_product_quantity"),
    )
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    purchase_price = Column(Float, nullable=False)
    selling_price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    category = Column(String(100), nullable=False, index=True)
    delivery_time = Column(String(100), nullable=False)
    brand = Column(String(100), nullable=False)
    product_type = Column(String(50), nullable=False, default=LABO_TYPES[0], index=True)
    images = Column(JSON, default=list)
    video = Column(String, nullable=True)
    supplier_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    supplier = relationship("User", back_populates="products")


class Commande(Base):
    __tablename__ = "commandes"
    __table_args__ = (CheckConstraint("total >= 0", name="ck_commande_total"),)
    id = Column(Integer, primary_key=True, index=True)
    total = Column(Float, nullable=False)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    lines = relationship("CommandeLine", back_populates="commande", cascade="all, delete-orphan",
                         order_by="CommandeLine.id")
    buyer = relationship("User", foreign_keys=[buyer_id])
    supplier = relationship("User", foreign_keys=[supplier_id])


class CommandeLine(Base):
    """Product snapshot taken when the order is placed."""
    __tablename__ = "commande_lines"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_line_quantity"),)
    id = Column(Integer, primary_key=True)
    commande_id = Column(Integer, ForeignKey("commandes.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(200), nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False)

    commande = relationship("Commande", back_populates="lines")


class Payment(Base):
    __tablename__ = "payments"
    id = Column(Integer, primary_key=True, index=True)
    commande_id = Column(Integer, ForeignKey("commandes.id"), unique=True, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    total = Column(Float, nullable=False)
    image = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)

    commande = relationship("Commande")
    owner = relationship("User")


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_receiver_read", "receiver_id", "is_read"),
        Index("ix_notifications_receiver_created", "receiver_id", "created_at"),
    )
    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String(20), nullable=False, default=NOTIFICATION_SYSTEM)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    sender = relationship("User", foreign_keys=[sender_id])


class Subscription(Base):
    __tablename__ = "abonnements"
    __table_args__ = (
        CheckConstraint('"end" > start', name="ck_abonnement_period"),
        CheckConstraint("price >= 0", name="ck_abonnement_price"),
    )
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    price = Column(Float, nullable=False)
    start = Column(DateTime, nullable=False)
    end = Column(DateTime, nullable=False, index=True)
    status = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="subscriptions")


class Papier(Base):
    __tablename__ = "papiers"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    type = Column(String(20), nullable=False)
    tax_number = Column(String, nullable=True)
    identity = Column(String, nullable=False)
    commercial_register = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Attachment(Base):
    __tablename__ = "attachments"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    image = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class PasswordReset(Base):
    __tablename__ = "password_resets"
    __table_args__ = (Index("ix_password_resets_lookup", "email", "code", "used"),)
    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False, index=True)
    code = Column(String(6), nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    used = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    token = Column(String(128), unique=True, nullable=False, index=True)
    user_agent = Column(String(255), default="")
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)


class Problem(Base):
    __tablename__ = "problems"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    phone = Column(String(30), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, default=utcnow)
