"""
Rendu Jinja2 et envoi SMTP des emails transactionnels.
"""
import logging
import smtplib
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from storefront.config import APP_NAME, MAIL_FROM, SITE_URL, SMTP_HOST, SMTP_PASS, SMTP_PORT, SMTP_USER, TEMPLATES_DIR

logger = logging.getLogger(__name__)

_jinja_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
)


class EmailDeliveryError(Exception):
    pass


# module storefront.emails.sender
def render_email(template_name: str, **context) -> str:
    base = {"app_name": APP_NAME, "site_url": SITE_URL}
    base.update(context or {})
    return _jinja_env.get_template(template_name).render(**base)


def send_email_smtp(to_addr: str, subject: str, html: str, text: Optional[str] = None) -> None:
    """
    Envoie un email HTML + texte via SMTP (STARTTLS).
    Lève EmailDeliveryError si SMTP n'est pas configuré ou si l'envoi échoue.
    """
    if not SMTP_HOST or not MAIL_FROM:
        raise EmailDeliveryError("SMTP not configured")
    sender = MAIL_FROM.strip()
    domain = sender.split("@")[-1] if "@" in sender else "localhost"

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{APP_NAME} <{sender}>" if "<" not in sender else sender
    msg["To"] = to_addr
    msg["Message-ID"] = f"<{uuid.uuid4()}@{domain}>"
    msg["Date"] = formatdate(usegmt=True)
    msg.attach(MIMEText(text or "Open this email in an HTML-capable client.", "plain", _charset="utf-8"))
    msg.attach(MIMEText(html or "", "html", _charset="utf-8"))

    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=20) as server:
            server.starttls()
            if SMTP_USER or SMTP_PASS:
                server.login(SMTP_USER, SMTP_PASS)
            server.sendmail(sender, [to_addr], msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        raise EmailDeliveryError(str(e)) from e
