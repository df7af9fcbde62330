"""
Outbound email for manager alerts.

Bodies are rendered from the Jinja2 templates in ./templates; a plain text
part carrying the notification message is always attached so that alerts
stay readable in clients that block HTML.
"""
import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Optional
from pathlib import Path
import logging
from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from backoffice.common.utils import format_quantity
from backoffice.core.config import settings

logger = logging.getLogger(__name__)

ALERT_TEMPLATE = "manager_alert.html"


class EmailService:

    def __init__(self):
        self.smtp_server = settings.EMAIL_SMTP_SERVER
        self.smtp_port = settings.EMAIL_SMTP_PORT
        self.username = settings.EMAIL_USERNAME
        self.password = settings.EMAIL_PASSWORD
        self.use_tls = settings.EMAIL_USE_TLS
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME

        template_dir = Path(__file__).parent / "templates"
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(['html', 'xml'])
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_server and self.from_email)

    def _connect(self) -> smtplib.SMTP:
        if self.use_tls:
            server = smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=30)
            server.starttls(context=ssl.create_default_context())
        else:
            server = smtplib.SMTP_SSL(self.smtp_server, self.smtp_port, timeout=30)

        # Relays inside the private network accept unauthenticated mail
        if self.username:
            server.login(self.username, self.password)
        return server

    def alert_subject(self, notification) -> str:
        return f"[{notification.priority.value}] {notification.title}"

    def render_alert(self, notification, manager_name: str, outlet_name: Optional[str] = None) -> str:
        """HTML body for one ManagerNotification."""
        template = self.jinja_env.get_template(ALERT_TEMPLATE)
        return template.render(
            title=notification.title,
            message=notification.message,
            priority=notification.priority.value,
            amount=format_quantity(notification.amount) if notification.amount is not None else None,
            currency=settings.CURRENCY_SYMBOL,
            action_by_name=notification.action_by_name,
            manager_name=manager_name,
            outlet_name=outlet_name,
            created_at=notification.created_at,
            frontend_url=settings.FRONTEND_URL,
        )

    def send_email(
        self,
        to_emails: List[str],
        subject: str,
        html_content: Optional[str] = None,
        text_content: Optional[str] = None
    ) -> bool:
        """Returns True when the SMTP server accepted the message."""
        if not self.is_configured:
            logger.warning(f"SMTP is not configured; dropping '{subject}' for {', '.join(to_emails)}")
            return False

        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{self.from_name} <{self.from_email}>"
        msg['To'] = ', '.join(to_emails)
        if text_content:
            msg.attach(MIMEText(text_content, 'plain', 'utf-8'))
        if html_content:
            msg.attach(MIMEText(html_content, 'html', 'utf-8'))

        try:
            with self._connect() as server:
                server.sendmail(self.from_email, to_emails, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Error sending '{subject}' to {', '.join(to_emails)}: {str(e)}")
            return False

        logger.info(f"Email '{subject}' sent to {', '.join(to_emails)}")
        return True

    def send_manager_alert(self, manager, notification, outlet_name: Optional[str] = None) -> bool:
        """Email a ManagerNotification to the manager it is addressed to."""
        try:
            html_content = self.render_alert(notification, manager.name, outlet_name)
        except TemplateError as e:
            # Still deliver the plain text alert
            logger.error(f"Could not render {ALERT_TEMPLATE} for notification {notification.id}: {str(e)}")
            html_content = None

        return self.send_email(
            to_emails=[manager.email],
            subject=self.alert_subject(notification),
            html_content=html_content,
            text_content=notification.message
        )


email_service = EmailService()
