import logging
from fastapi import HTTPException, status
from sqlalchemy.orm import Session
import models

logger = logging.getLogger(__name__)

ACCOUNT_NOT_ACTIVATED = "account_not_activated"
NO_SUBSCRIPTION = "no_subscription"
SUBSCRIPTION_EXPIRED = "subscription_expired"


def _deny(code: str, message: str):
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"message": message, "code": code})


def latest_subscription(db: Session, user_id: int):
    return (
        db.query(models.Subscription)
        .filter(models.Subscription.user_id == user_id)
        .order_by(models.Subscription.end.desc())
        .first()
    )


def check_login_allowed(db: Session, user: models.User):
    """
    Runs after the password check. Admins only need an active account; clients
    and suppliers also need a subscription whose end date is still ahead. An
    expired subscription deactivates both the subscription and the account
    before the login is refused.
    """
    if not user.status:
        _deny(ACCOUNT_NOT_ACTIVATED, "Votre compte n'est pas encore activé. Veuillez contacter l'administrateur.")
    if user.role == models.ROLE_ADMIN:
        return

    subscription = latest_subscription(db, user.id)
    if subscription is None:
        _deny(NO_SUBSCRIPTION, "Aucun abonnement trouvé. Veuillez contacter l'administrateur.")

    if subscription.end < models.utcnow():
        subscription.status = False
        user.status = False
        db.commit()
        logger.info("Subscription %s of user %s expired, account deactivated", subscription.id, user.id)
        _deny(SUBSCRIPTION_EXPIRED, "Votre abonnement a expiré. Veuillez renouveler votre abonnement.")
