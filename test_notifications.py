import models
import notification_service
import realtime
from main import app


def notify(db, sender, receiver, message="Bonjour", is_read=False):
    notification = models.Notification(
        sender_id=sender.id,
        receiver_id=receiver.id,
        type=models.NOTIFICATION_SYSTEM,
        message=message,
        is_read=is_read,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def test_list_defaults_to_unread(client, db, make_user, headers):
    sender = make_user(role=models.ROLE_SUPPLIER, first_name="Karim")
    receiver = make_user()
    notify(db, sender, receiver, "first")
    notify(db, sender, receiver, "second", is_read=True)
    notify(db, sender, receiver, "third")

    response = client.get("/notifications/", headers=headers(receiver))
    assert response.status_code == 200
    data = response.json()["data"]
    assert [n["message"] for n in data["notifications"]] == ["third", "first"]
    assert data["unreadCount"] == 2
    assert data["notifications"][0]["sender"]["firstName"] == "Karim"
    assert data["notifications"][0]["idReceiver"] == receiver.id

    response = client.get("/notifications/?unreadOnly=false", headers=headers(receiver))
    assert len(response.json()["data"]["notifications"]) == 3
    assert response.json()["data"]["unreadCount"] == 2


def test_list_is_capped(client, db, make_user, headers):
    sender = make_user(role=models.ROLE_SUPPLIER)
    receiver = make_user()
    db.add_all([
        models.Notification(sender_id=sender.id, receiver_id=receiver.id, message=f"n{i}")
        for i in range(notification_service.NOTIFICATION_LIMIT + 5)
    ])
    db.commit()

    data = client.get("/notifications/", headers=headers(receiver)).json()["data"]
    assert len(data["notifications"]) == notification_service.NOTIFICATION_LIMIT
    assert data["unreadCount"] == notification_service.NOTIFICATION_LIMIT + 5


def test_mark_read_only_own(client, db, make_user, headers):
    sender = make_user(role=models.ROLE_SUPPLIER)
    receiver = make_user()
    notification = notify(db, sender, receiver)

    response = client.put(f"/notifications/{notification.id}/read", headers=headers(sender))
    assert response.status_code == 403
    assert response.json()["message"] == "Unauthorized to mark this notification as read"

    response = client.put(f"/notifications/{notification.id}/read", headers=headers(receiver))
    assert response.status_code == 200
    assert response.json()["data"]["isRead"] is True

    response = client.put("/notifications/9999/read", headers=headers(receiver))
    assert response.status_code == 404


def test_mark_all_read_touches_only_caller(client, db, make_user, headers):
    sender = make_user(role=models.ROLE_SUPPLIER)
    receiver = make_user()
    bystander = make_user()
    notify(db, sender, receiver)
    notify(db, sender, receiver)
    notify(db, sender, bystander)

    response = client.put("/notifications/read-all", headers=headers(receiver))
    assert response.status_code == 200
    assert response.json()["data"]["updated"] == 2

    db.expire_all()
    assert notification_service.unread_count(db, receiver.id) == 0
    assert notification_service.unread_count(db, bystander.id) == 1


class BrokenPublisher:
    def publish(self, room, event, data):
        raise RuntimeError("socket gone")


def test_failed_push_does_not_raise(caplog):
    notification_service.push(BrokenPublisher(), "client_1", "orderStatusUpdate", {"orderId": 1})
    assert "Real-time push of orderStatusUpdate to room client_1 failed" in caplog.text


def test_order_survives_broken_push(client, db, make_user, make_product, headers, caplog):
    app.dependency_overrides[realtime.get_publisher] = lambda: BrokenPublisher()
    buyer = make_user()
    supplier = make_user(role=models.ROLE_SUPPLIER)
    product = make_product(supplier, price=500.0, quantity=10)

    response = client.post("/commandes/", json={"products": [{"id": product.id, "quantity": 1}]}, headers=headers(buyer))
    assert response.status_code == 201
    assert f"room supplier_{supplier.id} failed" in caplog.text

    db.expire_all()
    stored = db.query(models.Notification).filter(models.Notification.receiver_id == supplier.id).all()
    assert len(stored) == 1
    assert stored[0].sender_id == buyer.id
