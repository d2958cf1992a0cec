import os
import logging
from html import escape
from typing import Dict, Any, Optional
from fastapi_mail import FastMail, MessageSchema, ConnectionConfig, MessageType

logger = logging.getLogger("rescuebox.mailer")
logger.setLevel(logging.INFO)

MAIL_USERNAME = os.getenv("MAIL_USERNAME")
MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
MAIL_FROM = os.getenv("MAIL_FROM", MAIL_USERNAME) or "no-reply@rescuebox.cl"
MAIL_SERVER = os.getenv("MAIL_SERVER")
MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
MAIL_FROM_NAME = os.getenv("MAIL_FROM_NAME", "RescueBox")

MAIL_STARTTLS = os.getenv("MAIL_TLS", "true").lower() in ("1", "true", "yes")
MAIL_SSL_TLS = os.getenv("MAIL_SSL", "false").lower() in ("1", "true", "yes")


def _mail_configured() -> bool:
    return bool(MAIL_SERVER and MAIL_USERNAME and MAIL_PASSWORD)


def _connection_config() -> ConnectionConfig:
    return ConnectionConfig(
        MAIL_USERNAME=MAIL_USERNAME or "",
        MAIL_PASSWORD=MAIL_PASSWORD or "",
        MAIL_FROM=MAIL_FROM,
        MAIL_FROM_NAME=MAIL_FROM_NAME,
        MAIL_PORT=MAIL_PORT,
        MAIL_SERVER=MAIL_SERVER or "localhost",
        MAIL_STARTTLS=MAIL_STARTTLS,
        MAIL_SSL_TLS=MAIL_SSL_TLS,
        USE_CREDENTIALS=bool(MAIL_USERNAME and MAIL_PASSWORD),
        VALIDATE_CERTS=True,
    )


def _confirmation_html(qr_code: str, box_nombre: Optional[str], franja_horaria: Optional[str]) -> str:
    # nombre y franja los escribe la tienda o el cliente
    return f"""
    <div>
      <p>Reservaste <strong>{escape(box_nombre or "una caja")}</strong>.</p>
      <p>Franja de retiro: {escape(franja_horaria or "")}</p>
      <p>Muestra este código en la tienda al retirar:</p>
      <p style="font-size:18px"><code>{escape(qr_code)}</code></p>
      <p>Si ya no puedes retirarla, cancela la reserva desde la app.</p>
    </div>
    """


async def send_reservation_confirmation(
    recipient_email: Optional[str],
    qr_code: str,
    box_nombre: Optional[str],
    franja_horaria: str,
) -> Dict[str, Any]:
    if not recipient_email:
        return {"status": "skipped", "to": None}

    subject = "Tu reserva RescueBox está confirmada"
    html = _confirmation_html(qr_code, box_nombre, franja_horaria)

    # sin configuración SMTP no fallamos: solo se deja registro
    if not _mail_configured():
        logger.warning(
            "Mail not configured (MAIL_SERVER/MAIL_USERNAME/MAIL_PASSWORD). Pickup code for %s: %s",
            recipient_email,
            qr_code,
        )
        return {"status": "not_configured", "to": recipient_email, "qr_code": qr_code}

    message = MessageSchema(
        subject=subject,
        recipients=[recipient_email],
        body=html,
        subtype=MessageType.html,
    )

    try:
        fm = FastMail(_connection_config())
        await fm.send_message(message)
        logger.info("Reservation confirmation sent to %s", recipient_email)
        return {"status": "sent", "to": recipient_email, "qr_code": qr_code}
    except Exception as e:
        logger.exception("Failed sending reservation confirmation to %s: %s", recipient_email, e)
        return {"status": "failed", "to": recipient_email, "error": str(e)}
