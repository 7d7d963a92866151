"""
SDLC Governance Approval Engine
Email Service — Notification Sink.

Sends approval notifications with template support. When SMTP is not
configured, emails are logged but not sent.

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from sdlc_governance.models import db
from sdlc_governance.models.notification import EmailLog

logger = logging.getLogger(__name__)


_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: #1e293b; color: white; padding: 16px 24px;">
        <h2 style="margin: 0; font-size: 18px;">SDLC Governance</h2>
    </div>
    <div style="padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        {body}
        <p><a href="{link}">Open in SDLC Governance</a></p>
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "approval_requested": {
        "subject": "[SDLC] Approval requested: {subject_label}",
        "body": "<p>Hello {recipient_name},</p>"
                "<p>Your approval is requested for <strong>{subject_label}</strong> "
                "(priority {priority}, {mode} approval).</p>",
    },
    "approval_turn": {
        "subject": "[SDLC] Your turn to decide: {subject_label}",
        "body": "<p>Hello {recipient_name},</p>"
                "<p>The previous approver recorded <strong>{previous_outcome}</strong>. "
                "<strong>{subject_label}</strong> is now waiting for your decision.</p>",
    },
    "approval_completed": {
        "subject": "[SDLC] {outcome}: {subject_label}",
        "body": "<p>Hello {recipient_name},</p>"
                "<p>The approval round for <strong>{subject_label}</strong> "
                "has completed with outcome <strong>{outcome}</strong>.</p>",
    },
}


class EmailService:
    """Email sending with log-only fallback; every email is recorded in EmailLog."""

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        template_name: str | None = None,
    ) -> EmailLog:
        """Send an email and record it. Commits its own EmailLog row."""
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject,
            template_name=template_name,
            status="queued",
        )
        db.session.add(log)

        if not cls.is_configured():
            log.status = "logged"
            logger.info("Email (log-only): to=%s subject='%s' template=%s",
                        to_email, subject, template_name)
        else:
            try:
                cls._send_smtp(to_email=to_email, to_name=to_name,
                               subject=subject, html_body=html_body)
                log.status = "sent"
                log.sent_at = datetime.now(timezone.utc)
                logger.info("Email sent: to=%s subject='%s'", to_email, subject)
            except (smtplib.SMTPException, OSError) as exc:
                log.status = "failed"
                log.error_message = str(exc)[:1000]
                logger.error("Email failed: to=%s error=%s", to_email, exc)

        db.session.commit()
        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
    ) -> EmailLog | None:
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        ctx = _SafeDict(context)
        ctx.setdefault("recipient_name", to_name or to_email)
        ctx.setdefault("link", current_app.config.get("APP_BASE_URL", ""))
        subject = template["subject"].format_map(ctx)
        html_body = _LAYOUT.format_map(_SafeDict(body=template["body"].format_map(ctx), link=ctx["link"]))
        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            template_name=template_name,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
