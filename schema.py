import re
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional

from fastapi.exceptions import RequestValidationError
from pydantic import (
    BaseModel, BeforeValidator, EmailStr, Field, StrictBool, ValidationError, field_validator, model_validator,
)
from pydantic.alias_generators import to_camel

from models import LABO_TYPES, ORDER_STATUSES, PAYMENT_METHODS, ROLE_CLIENT, ROLE_SUPPLIER

PHONE_PATTERN = r"^[+]?[(]?[0-9]{1,4}[)]?[-\s.]?[(]?[0-9]{1,4}[)]?[-\s.]?[0-9]{1,9}$"
WEAK_PASSWORDS = {"password", "123456", "qwerty", "abc123", "12345678", "password1"}


def sanitize_input(value):
    if not isinstance(value, str):
        return value
    value = value.strip()
    value = re.sub(r"[<>]", "", value)
    value = re.sub(r"javascript:", "", value, flags=re.IGNORECASE)
    return re.sub(r"on\w+=", "", value, flags=re.IGNORECASE)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


CleanStr = Annotated[str, BeforeValidator(sanitize_input)]


def describe_errors(errors) -> List[str]:
    """Flatten pydantic error dicts into 'field: message' strings."""
    messages = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "form")]
        msg = error.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        messages.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return messages


def validate_form(model_cls, **data):
    """Build a request model from multipart form fields, failing like a JSON body would."""
    try:
        return model_cls(**data)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors())


class ApiModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


def dump(model_cls, obj):
    return model_cls.model_validate(obj).model_dump(by_alias=True)


# --- Auth Schemas ---
class RegisterIn(ApiModel):
    first_name: CleanStr = Field(min_length=2, max_length=50)
    last_name: CleanStr = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(min_length=8)
    phone: CleanStr = Field(pattern=PHONE_PATTERN)
    address: CleanStr = Field(min_length=5, max_length=200)
    role: Literal["client", "supplier"] = ROLE_CLIENT
    labo_type: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()

    @field_validator("password")
    @classmethod
    def password_strength(cls, v):
        if not re.search(r"[a-z]", v) or not re.search(r"[A-Z]", v) or not re.search(r"\d", v):
            raise ValueError("Password must contain at least one uppercase letter, one lowercase letter, and one number")
        return v

    @model_validator(mode="after")
    def check_labo_type(self):
        if self.role == ROLE_CLIENT:
            if not self.labo_type:
                raise ValueError("Le type de laboratoire est requis pour les clients")
            if self.labo_type not in LABO_TYPES:
                raise ValueError("Le type de laboratoire doit être 'Labo médical' ou 'labo d'ana pathologies'")
        else:
            self.labo_type = None
        return self


class SupplierRegisterIn(RegisterIn):
    role: Literal["supplier"] = ROLE_SUPPLIER


class LoginIn(ApiModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class RefreshIn(ApiModel):
    refresh_token: str = Field(min_length=1)


class ForgotPasswordIn(ApiModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class VerifyResetCodeIn(ForgotPasswordIn):
    code: str = Field(pattern=r"^\d{6}$")


class ResetPasswordIn(VerifyResetCodeIn):
    new_password: str = Field(min_length=8, max_length=128)


class SupportIn(ApiModel):
    email: EmailStr
    phone: CleanStr = Field(min_length=6, max_length=30)
    message: CleanStr = Field(min_length=1, max_length=2000)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


# --- Profile Schemas ---
class ProfileUpdateIn(ApiModel):
    first_name: CleanStr = Field(min_length=2, max_length=50)
    last_name: CleanStr = Field(min_length=2, max_length=50)
    phone: Optional[CleanStr] = Field(default=None, pattern=PHONE_PATTERN)
    address: Optional[CleanStr] = Field(default=None, min_length=5, max_length=200)


class SupplierProfileUpdateIn(ApiModel):
    first_name: Optional[CleanStr] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[CleanStr] = Field(default=None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[CleanStr] = Field(default=None, min_length=10, max_length=15)
    address: Optional[CleanStr] = Field(default=None, min_length=5, max_length=200)
    rip_post: Optional[CleanStr] = None
    rip_bank: Optional[CleanStr] = None
    methode_payment: Optional[List[str]] = None

    @field_validator("methode_payment")
    @classmethod
    def known_methods(cls, v):
        if v is None:
            return v
        invalid = [m for m in v if m not in PAYMENT_METHODS]
        if invalid:
            raise ValueError(
                f"Invalid payment methods: {', '.join(invalid)}. Allowed methods: {', '.join(PAYMENT_METHODS)}"
            )
        return v


class AdminProfileUpdateIn(ApiModel):
    first_name: Optional[CleanStr] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[CleanStr] = Field(default=None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[CleanStr] = Field(default=None, pattern=PHONE_PATTERN)
    address: Optional[CleanStr] = Field(default=None, min_length=5, max_length=200)


class PasswordUpdateIn(ApiModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=128)

    @model_validator(mode="after")
    def check_new_password(self):
        if self.new_password.lower() in WEAK_PASSWORDS:
            raise ValueError("Le mot de passe est trop faible. Veuillez choisir un mot de passe plus fort")
        if self.new_password == self.current_password:
            raise ValueError("Le nouveau mot de passe doit être différent du mot de passe actuel")
        return self


# --- Product Schemas ---
class ProductIn(ApiModel):
    name: CleanStr = Field(min_length=2, max_length=200)
    purchase_price: float = Field(ge=0, le=10_000_000)
    selling_price: float = Field(ge=0, le=10_000_000)
    quantity: int = Field(ge=0, le=1_000_000)
    category: CleanStr = Field(min_length=2, max_length=100)
    delivery_time: CleanStr = Field(min_length=2, max_length=100)
    brand: CleanStr = Field(min_length=2, max_length=100)
    product_type: Literal["Labo médical", "labo d'ana pathologies"]

    @model_validator(mode="after")
    def check_margin(self):
        if self.selling_price < self.purchase_price:
            raise ValueError("Selling price must be greater than or equal to purchase price")
        return self


class ProductUpdateIn(ApiModel):
    name: Optional[CleanStr] = Field(default=None, min_length=2, max_length=200)
    purchase_price: Optional[float] = Field(default=None, ge=0, le=10_000_000)
    selling_price: Optional[float] = Field(default=None, ge=0, le=10_000_000)
    quantity: Optional[int] = Field(default=None, ge=0, le=1_000_000)
    category: Optional[CleanStr] = Field(default=None, min_length=2, max_length=100)
    delivery_time: Optional[CleanStr] = Field(default=None, min_length=2, max_length=100)
    brand: Optional[CleanStr] = Field(default=None, min_length=2, max_length=100)
    product_type: Optional[Literal["Labo médical", "labo d'ana pathologies"]] = None


class ProductOut(ApiModel):
    id: int
    name: str
    purchase_price: float
    selling_price: float
    quantity: int
    category: str
    delivery_time: str
    brand: str
    product_type: str
    images: List[str] = []
    video: Optional[str] = None
    supplier_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ContactOut(ApiModel):
    id: int
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None


class SupplierCardOut(ApiModel):
    id: int
    name: str = Field(validation_alias="full_name")
    email: str
    phone: str
    address: str


class PublicProductOut(ApiModel):
    """Catalog view: the purchase price never leaves the supplier's own screens."""
    id: int
    name: str
    price: float = Field(validation_alias="selling_price")
    quantity: int
    category: str
    delivery_time: str
    brand: str
    product_type: str
    images: List[str] = []
    video: Optional[str] = None
    supplier: Optional[SupplierCardOut] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# --- Order Schemas ---
class OrderItemIn(ApiModel):
    id: int
    quantity: int = Field(ge=1)


class OrderCreateIn(ApiModel):
    products: List[OrderItemIn] = Field(min_length=1)


class OrderStatusIn(ApiModel):
    status: str

    @field_validator("status")
    @classmethod
    def known_status(cls, v):
        if v not in ORDER_STATUSES:
            raise ValueError("Invalid status. Must be 'en cours', 'on route', or 'arrived'")
        return v


class OrderLineOut(ApiModel):
    product_id: Optional[int] = None
    name: str
    price: float
    quantity: int


class OrderOut(ApiModel):
    id: int
    total: float
    status: str
    lines: List[OrderLineOut] = Field(serialization_alias="products")
    buyer_id: int = Field(serialization_alias="idBuyer")
    supplier_id: int = Field(serialization_alias="idSupplier")
    buyer: Optional[ContactOut] = None
    supplier: Optional[ContactOut] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# --- Payment Schemas ---
class PaymentIn(ApiModel):
    id_commande: int
    total: float = Field(ge=0)


class PaymentOut(ApiModel):
    id: int
    commande_id: int = Field(serialization_alias="id_commande")
    owner_id: int = Field(serialization_alias="id_owner")
    total: float
    image: str
    created_at: Optional[datetime] = None


# --- Notification Schemas ---
class NotificationOut(ApiModel):
    id: int
    sender_id: int = Field(serialization_alias="idSender")
    receiver_id: int = Field(serialization_alias="idReceiver")
    sender: Optional[ContactOut] = None
    type: str
    message: str
    is_read: bool
    created_at: Optional[datetime] = None


# --- User / Admin Schemas ---
class UserOut(ApiModel):
    id: int
    first_name: str
    last_name: str
    email: str
    phone: str
    address: str
    role: str
    status: bool
    labo_type: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SupplierOut(UserOut):
    rip_post: Optional[str] = Field(default="", serialization_alias="rip_post")
    rip_bank: Optional[str] = Field(default="", serialization_alias="rip_bank")
    payment_methods: List[str] = Field(default_factory=list, serialization_alias="methode_payment")


class UserStatusIn(ApiModel):
    status: StrictBool


class AdminCreateIn(ApiModel):
    first_name: CleanStr = Field(min_length=2, max_length=50)
    last_name: CleanStr = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(min_length=8)
    phone: CleanStr = Field(min_length=1)
    address: CleanStr = Field(min_length=5, max_length=200)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


# --- Subscription Schemas ---
class SubscriptionCreateIn(ApiModel):
    id_user: int
    type: CleanStr = Field(min_length=1)
    price: float = Field(ge=0)
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def naive_utc(cls, v):
        return to_naive_utc(v)

    @model_validator(mode="after")
    def check_period(self):
        if self.end <= self.start:
            raise ValueError("End date must be after start date")
        return self


class SubscriptionUpdateIn(ApiModel):
    type: Optional[CleanStr] = Field(default=None, min_length=1)
    price: Optional[float] = Field(default=None, ge=0)
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def naive_utc(cls, v):
        return to_naive_utc(v) if v is not None else v


class SubscriptionOut(ApiModel):
    id: int
    user_id: int = Field(serialization_alias="id_user")
    user: Optional[ContactOut] = None
    type: str
    price: float
    start: datetime
    end: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PapierOut(ApiModel):
    id: int
    user_id: int = Field(serialization_alias="id_user")
    type: str
    tax_number: Optional[str] = Field(default=None, serialization_alias="Tax_number")
    identity: str
    commercial_register: Optional[str] = Field(default=None, serialization_alias="commercial_register")


class AttachmentOut(ApiModel):
    id: int
    user_id: int = Field(serialization_alias="id_user")
    image: str


class ProblemOut(ApiModel):
    id: int
    email: str
    phone: str
    message: str
    is_read: bool = Field(serialization_alias="is_read")
    created_at: Optional[datetime] = None
