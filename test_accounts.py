from datetime import timedelta

import accounts
import email_service
import models
from conftest import PASSWORD


def register_payload(**overrides):
    payload = {
        "firstName": "Nadia",
        "lastName": "Haddad",
        "email": "nadia@example.com",
        "password": "Secret123",
        "phone": "0555123456",
        "address": "5 rue Larbi Ben M'hidi, Oran",
        "role": "client",
        "laboType": "Labo médical",
    }
    payload.update(overrides)
    return payload


# Root and health
def test_root_response(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["app_name"] == "Market Lab API"
    assert response.json()["realtime"] == "/ws"


def test_health_response(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["services"]["database"] == "online"


# Registration
def test_register_client_is_inactive_until_subscribed(client, db):
    response = client.post("/client/register", json=register_payload(email="Nadia@Example.com"))
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["token"]
    assert body["data"]["email"] == "nadia@example.com"
    assert body["data"]["status"] is False
    assert body["data"]["laboType"] == "Labo médical"
    assert "hashedPassword" not in body["data"]

    user = db.query(models.User).filter(models.User.email == "nadia@example.com").one()
    assert user.hashed_password != "Secret123"


def test_register_duplicate_email(client):
    assert client.post("/client/register", json=register_payload()).status_code == 201
    response = client.post("/client/register", json=register_payload(email="NADIA@example.com"))
    assert response.status_code == 409
    assert response.json() == {"success": False, "message": "Email already registered"}


def test_register_race_on_same_email(client, monkeypatch):
    # both requests pass the lookup, the unique index decides
    monkeypatch.setattr(accounts, "ensure_email_free", lambda db, email, exclude_user_id=None: None)
    assert client.post("/client/register", json=register_payload()).status_code == 201
    response = client.post("/client/register", json=register_payload())
    assert response.status_code == 409
    assert response.json() == {"success": False, "message": "Email already registered"}


def test_register_validation_errors(client):
    response = client.post("/client/register", json=register_payload(laboType=None))
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["message"] == "Validation error"
    assert any("laboratoire" in e for e in response.json()["errors"])

    assert client.post("/client/register", json=register_payload(password="alllowercase1")).status_code == 400
    assert client.post("/client/register", json=register_payload(role="admin")).status_code == 400
    assert client.post("/client/register", json=register_payload(phone="not a phone")).status_code == 400


def test_register_strips_markup(client):
    response = client.post("/client/register", json=register_payload(firstName="<b>Nadia</b>"))
    assert response.status_code == 201
    assert "<" not in response.json()["data"]["firstName"]
    assert ">" not in response.json()["data"]["firstName"]


def test_register_supplier_drops_labo_type(client):
    response = client.post("/supplier/register", json=register_payload(role="supplier", email="s@example.com"))
    assert response.status_code == 201
    assert response.json()["data"]["role"] == "supplier"
    assert response.json()["data"]["laboType"] is None


# Login gate
def test_login_requires_activation(client):
    client.post("/client/register", json=register_payload())
    response = client.post("/client/login", json={"email": "nadia@example.com", "password": "Secret123"})
    assert response.status_code == 403
    assert response.json()["code"] == "account_not_activated"
    assert response.json()["success"] is False


def test_login_wrong_password(client, make_user):
    user = make_user()
    response = client.post("/client/login", json={"email": user.email, "password": "Wrong1234"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid email or password"


def test_login_without_subscription(client, make_user):
    user = make_user(subscribed_days=None)
    response = client.post("/client/login", json={"email": user.email, "password": PASSWORD})
    assert response.status_code == 403
    assert response.json()["code"] == "no_subscription"


def test_login_expired_subscription_deactivates_account(client, db, make_user):
    user = make_user(subscribed_days=-1)
    response = client.post("/client/login", json={"email": user.email, "password": PASSWORD})
    assert response.status_code == 403
    assert response.json()["code"] == "subscription_expired"

    db.expire_all()
    assert db.get(models.User, user.id).status is False
    subscription = db.query(models.Subscription).filter(models.Subscription.user_id == user.id).one()
    assert subscription.status is False

    response = client.post("/client/login", json={"email": user.email, "password": PASSWORD})
    assert response.json()["code"] == "account_not_activated"


def test_login_success_and_refresh_rotation(client, make_user):
    user = make_user()
    response = client.post(
        "/client/login",
        json={"email": user.email.upper(), "password": PASSWORD},
        headers={"User-Agent": "pytest-agent"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["token"]
    assert body["data"]["id"] == user.id
    old_refresh = body["refreshToken"]

    devices = client.get("/client/devices", headers={"Authorization": f"Bearer {body['token']}"})
    assert devices.status_code == 200
    assert [d["userAgent"] for d in devices.json()["data"]["devices"]] == ["pytest-agent"]

    rotated = client.post("/client/refresh-token", json={"refreshToken": old_refresh})
    assert rotated.status_code == 200
    assert rotated.json()["refreshToken"] != old_refresh
    assert rotated.json()["token"]

    reused = client.post("/client/refresh-token", json={"refreshToken": old_refresh})
    assert reused.status_code == 401
    assert reused.json()["message"] == "Invalid or expired refresh token"


def login(client, user):
    response = client.post("/client/login", json={"email": user.email, "password": PASSWORD})
    assert response.status_code == 200
    return response.json()["refreshToken"]


def test_refresh_refused_once_account_is_blocked(client, db, make_user):
    user = make_user()
    refresh = login(client, user)

    db.expire_all()
    db.get(models.User, user.id).status = False
    db.commit()

    response = client.post("/client/refresh-token", json={"refreshToken": refresh})
    assert response.status_code == 403
    assert response.json()["code"] == "account_not_activated"

    db.expire_all()
    assert db.query(models.RefreshToken).filter(models.RefreshToken.user_id == user.id).count() == 0
    response = client.post("/client/refresh-token", json={"refreshToken": refresh})
    assert response.status_code == 401


def test_refresh_refused_once_subscription_expires(client, db, make_user):
    user = make_user()
    refresh = login(client, user)

    db.expire_all()
    subscription = db.query(models.Subscription).filter(models.Subscription.user_id == user.id).one()
    subscription.end = models.utcnow() - timedelta(days=1)
    db.commit()

    response = client.post("/client/refresh-token", json={"refreshToken": refresh})
    assert response.status_code == 403
    assert response.json()["code"] == "subscription_expired"

    db.expire_all()
    assert db.get(models.User, user.id).status is False


def test_admin_logs_in_without_subscription(client, make_user):
    admin = make_user(role=models.ROLE_ADMIN)
    response = client.post("/client/login", json={"email": admin.email, "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["data"]["role"] == "admin"


# Authentication failures
def test_missing_or_invalid_token(client):
    response = client.get("/client/profile")
    assert response.status_code == 401
    assert response.json()["success"] is False

    response = client.get("/client/profile", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["message"] == "Session invalid or expired"


def test_wrong_role_is_forbidden(client, make_user, headers):
    supplier = make_user(role=models.ROLE_SUPPLIER)
    response = client.post("/commandes/", json={"products": [{"id": 1, "quantity": 1}]}, headers=headers(supplier))
    assert response.status_code == 403
    assert response.json()["message"] == "Access denied. Insufficient permissions"


# Password reset
def test_forgot_and_reset_password(client, make_user, monkeypatch):
    sent = {}
    monkeypatch.setattr(email_service, "send_reset_code", lambda recipient, code: sent.update(email=recipient, code=code))
    user = make_user()

    response = client.post("/client/forgot-password", json={"email": user.email})
    assert response.status_code == 200
    assert sent["email"] == user.email
    assert len(sent["code"]) == 6

    wrong = "111111" if sent["code"] != "111111" else "222222"
    response = client.post("/client/verify-reset-code", json={"email": user.email, "code": wrong})
    assert response.status_code == 400
    assert response.json()["message"] == "Code invalide ou expiré"

    response = client.post("/client/verify-reset-code", json={"email": user.email, "code": sent["code"]})
    assert response.status_code == 200

    response = client.post(
        "/client/reset-password",
        json={"email": user.email, "code": sent["code"], "newPassword": "NewSecret456"},
    )
    assert response.status_code == 200

    assert client.post("/client/login", json={"email": user.email, "password": PASSWORD}).status_code == 401
    assert client.post("/client/login", json={"email": user.email, "password": "NewSecret456"}).status_code == 200

    reused = client.post(
        "/client/reset-password",
        json={"email": user.email, "code": sent["code"], "newPassword": "Another789"},
    )
    assert reused.status_code == 400


def test_forgot_password_unknown_email_gives_same_answer(client, monkeypatch):
    calls = []
    monkeypatch.setattr(email_service, "send_reset_code", lambda recipient, code: calls.append(recipient))
    response = client.post("/client/forgot-password", json={"email": "ghost@example.com"})
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert calls == []


def test_new_reset_code_invalidates_previous(client, make_user, monkeypatch):
    codes = []
    monkeypatch.setattr(email_service, "send_reset_code", lambda recipient, code: codes.append(code))
    user = make_user()
    client.post("/client/forgot-password", json={"email": user.email})
    client.post("/client/forgot-password", json={"email": user.email})
    if codes[0] != codes[1]:
        response = client.post("/client/verify-reset-code", json={"email": user.email, "code": codes[0]})
        assert response.status_code == 400
    response = client.post("/client/verify-reset-code", json={"email": user.email, "code": codes[1]})
    assert response.status_code == 200


# Profile
def test_profile_read_and_update(client, make_user, headers):
    user = make_user()
    response = client.get("/client/profile", headers=headers(user))
    assert response.status_code == 200
    assert response.json()["data"]["email"] == user.email

    response = client.put(
        "/client/profile",
        json={"firstName": "Yacine", "lastName": "Benali", "address": "3 place des Martyrs, Alger"},
        headers=headers(user),
    )
    assert response.status_code == 200
    assert response.json()["data"]["firstName"] == "Yacine"
    assert response.json()["data"]["address"] == "3 place des Martyrs, Alger"


def test_role_endpoint(client, make_user, headers):
    user = make_user(labo_type="labo d'ana pathologies")
    response = client.get("/client/role", headers=headers(user))
    assert response.json()["data"] == {"role": "client", "laboType": "labo d'ana pathologies"}


def test_password_change(client, make_user, headers):
    user = make_user()
    response = client.put(
        "/client/password",
        json={"currentPassword": "Wrong1234", "newPassword": "Another789"},
        headers=headers(user),
    )
    assert response.status_code == 401

    response = client.put(
        "/client/password",
        json={"currentPassword": PASSWORD, "newPassword": PASSWORD},
        headers=headers(user),
    )
    assert response.status_code == 400

    response = client.put(
        "/client/password",
        json={"currentPassword": PASSWORD, "newPassword": "Another789"},
        headers=headers(user),
    )
    assert response.status_code == 200
    assert client.post("/client/login", json={"email": user.email, "password": "Another789"}).status_code == 200


# Documents
def test_client_identity_document(client, make_user, headers, pdf_file):
    user = make_user()
    response = client.post("/client/documents", files={"identity": pdf_file}, headers=headers(user))
    assert response.status_code == 201
    assert response.json()["data"]["identity"].startswith("/uploads/documents/")
    assert response.json()["data"]["type"] == "client"

    response = client.post("/client/documents", files={"identity": pdf_file}, headers=headers(user))
    assert response.status_code == 200

    response = client.post(
        "/client/documents",
        files={"identity": pdf_file, "Tax_number": pdf_file},
        headers=headers(user),
    )
    assert response.status_code == 400
    assert "Tax_number" in response.json()["message"]


def test_supplier_documents_all_or_nothing(client, make_user, headers, pdf_file):
    supplier = make_user(role=models.ROLE_SUPPLIER)
    bad = ("notes.txt", b"plain text", "text/plain")
    response = client.post(
        "/supplier/documents",
        files={"Tax_number": pdf_file, "identity": pdf_file, "commercial_register": bad},
        headers=headers(supplier),
    )
    assert response.status_code == 400
    assert client.get("/supplier/documents", headers=headers(supplier)).status_code == 404

    response = client.post(
        "/supplier/documents",
        files={"Tax_number": pdf_file, "identity": pdf_file, "commercial_register": pdf_file},
        headers=headers(supplier),
    )
    assert response.status_code == 201
    documents = client.get("/supplier/documents", headers=headers(supplier)).json()["data"]
    assert documents["Tax_number"].endswith(".pdf")
    assert documents["commercial_register"].endswith(".pdf")


def test_dangerous_upload_rejected(client, make_user, headers):
    supplier = make_user(role=models.ROLE_SUPPLIER)
    response = client.post(
        "/supplier/profile-image",
        files={"image": ("avatar.exe", b"MZ\x90\x00", "application/octet-stream")},
        headers=headers(supplier),
    )
    assert response.status_code == 400
    assert "Dangerous" in response.json()["message"]


def test_supplier_profile_image_replacement(client, make_user, headers):
    supplier = make_user(role=models.ROLE_SUPPLIER)
    assert client.get("/supplier/profile-image", headers=headers(supplier)).status_code == 404

    first = client.post(
        "/supplier/profile-image", files={"image": ("a.png", b"\x89PNG first", "image/png")}, headers=headers(supplier)
    )
    second = client.post(
        "/supplier/profile-image", files={"image": ("b.png", b"\x89PNG second", "image/png")}, headers=headers(supplier)
    )
    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["data"]["id"] == second.json()["data"]["id"]
    current = client.get("/supplier/profile-image", headers=headers(supplier)).json()["data"]
    assert current["image"] == second.json()["data"]["image"]


# Supplier profile
def test_supplier_profile_payment_methods(client, make_user, headers):
    supplier = make_user(role=models.ROLE_SUPPLIER)
    response = client.put("/supplier/profile", json={"methode_payment": ["bank"]}, headers=headers(supplier))
    assert response.status_code == 400
    assert "RIP Bank" in response.json()["message"]

    response = client.put(
        "/supplier/profile",
        json={"methode_payment": ["bank", "cash"], "rip_bank": "00799999001234567890"},
        headers=headers(supplier),
    )
    assert response.status_code == 200
    assert response.json()["data"]["methode_payment"] == ["bank", "cash"]
    assert response.json()["data"]["rip_bank"] == "00799999001234567890"

    response = client.put("/supplier/profile", json={"methode_payment": ["cheque"]}, headers=headers(supplier))
    assert response.status_code == 400


def test_supplier_profile_email_conflict(client, make_user, headers):
    supplier = make_user(role=models.ROLE_SUPPLIER)
    other = make_user()
    response = client.put("/supplier/profile", json={"email": other.email}, headers=headers(supplier))
    assert response.status_code == 409


def test_public_supplier_card(client, make_user, make_product):
    supplier = make_user(role=models.ROLE_SUPPLIER, first_name="Karim", last_name="Saidi")
    make_product(supplier, name="Microscope", quantity=3)
    make_product(supplier, name="Pipette", quantity=0)

    response = client.get(f"/supplier/{supplier.id}")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["supplier"]["firstName"] == "Karim"
    assert data["supplier"]["profileImage"] is None
    assert [p["name"] for p in data["products"]] == ["Microscope"]
    assert "purchasePrice" not in data["products"][0]
    assert data["stats"]["totalProducts"] == 2

    client_user = make_user()
    assert client.get(f"/supplier/{client_user.id}").status_code == 404


# Support
def test_support_message_reaches_admin_room(client, db, publisher, monkeypatch):
    monkeypatch.setattr(email_service, "send_support_message", lambda email, phone, message: True)
    response = client.post(
        "/client/support",
        json={"email": "visitor@example.com", "phone": "0555000111", "message": "Impossible de payer"},
    )
    assert response.status_code == 201
    assert db.query(models.Problem).count() == 1
    events = publisher.for_room("admin")
    assert len(events) == 1
    assert events[0][0] == "newProblem"
    assert events[0][1]["email"] == "visitor@example.com"
