import logging
import smtplib
from email.mime.text import MIMEText
from config import settings

logger = logging.getLogger(__name__)


def send_email(subject: str, recipient: str, html_body: str) -> bool:
    """Best-effort delivery: returns False instead of raising when SMTP fails."""
    if not settings.smtp_configured:
        logger.warning("SMTP not configured, skipping email '%s' to %s", subject, recipient)
        return False

    msg = MIMEText(html_body, "html", "utf-8")
    msg["Subject"] = subject
    msg["From"] = settings.EMAIL_FROM
    msg["To"] = recipient

    try:
        s = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10)
        try:
            s.starttls()
            s.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            s.sendmail(settings.EMAIL_FROM, [recipient], msg.as_string())
        finally:
            s.quit()
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Email '%s' to %s failed: %s", subject, recipient, e)
        return False
    logger.info("Email '%s' sent to %s", subject, recipient)
    return True


def send_reset_code(recipient: str, code: str) -> bool:
    html_body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2 style="color: #2563eb;">Réinitialisation de mot de passe</h2>
      <p>Vous avez demandé la réinitialisation de votre mot de passe Market Lab.</p>
      <p>Votre code de vérification est :</p>
      <p style="font-size: 28px; font-weight: bold; letter-spacing: 6px;">{code}</p>
      <p>Ce code est valable pendant {settings.RESET_CODE_EXPIRE_MIN} minutes.</p>
      <p>Si vous n'êtes pas à l'origine de cette demande, ignorez cet email.</p>
    </div>
    """
    return send_email("Code de réinitialisation de mot de passe", recipient, html_body)


def send_support_message(email: str, phone: str, message: str) -> bool:
    html_body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2>Nouveau message de support</h2>
      <p><strong>Email :</strong> {email}</p>
      <p><strong>Téléphone :</strong> {phone}</p>
      <p><strong>Message :</strong></p>
      <p>{message}</p>
    </div>
    """
    return send_email("Nouveau message de support - Market Lab", settings.SUPPORT_INBOX, html_body)
