"""Alert notification delivery: in-app log, email via SMTP, Slack via webhook.

Delivery runs after the AlertEvent is committed. Every channel reports
True/False and logs its own failures; nothing here raises to the caller.
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import httpx

from sigscore.config import get_settings
from sigscore.models.alert_event import AlertEvent
from sigscore.models.alert_rule import AlertRule
from sigscore.schemas.alert import AlertChannels

logger = logging.getLogger(__name__)

SLACK_ATTEMPTS = 2


def build_subject(rule: AlertRule, event: AlertEvent, account_name: str | None) -> str:
    prefix = "[TEST] " if event.is_test else ""
    target = f" for {account_name}" if account_name else ""
    return f"{prefix}Sigscore alert: {rule.name}{target}"


def build_text(rule: AlertRule, event: AlertEvent, account_name: str | None) -> str:
    lines = [build_subject(rule, event, account_name), "", event.reason]
    after = event.snapshot_after or {}
    before = event.snapshot_before or {}
    if after:
        lines.append(f"Current score: {after.get('score')} ({after.get('tier')})")
    if before:
        lines.append(f"Previous score: {before.get('score')} ({before.get('tier')})")
    lines.append(f"Trigger: {rule.trigger_type}")
    return "\n".join(lines)


class AlertDispatcher:
    """Sends one fired alert to every channel enabled on its rule."""

    def __init__(self, settings=None) -> None:
        self.settings = settings or get_settings()

    def dispatch(
        self, rule: AlertRule, event: AlertEvent, account_name: str | None = None
    ) -> dict[str, bool]:
        channels = AlertChannels.model_validate(rule.channels or {})
        results: dict[str, bool] = {}
        for name in channels.enabled():
            sender = getattr(self, f"send_{name}")
            try:
                results[name] = sender(rule, event, account_name, channels)
            except Exception:
                logger.exception(
                    "alert_delivery_failed: channel=%s rule=%s event=%s", name, rule.id, event.id
                )
                results[name] = False
        return results

    def send_in_app(
        self, rule: AlertRule, event: AlertEvent, account_name: str | None, channels: AlertChannels
    ) -> bool:
        # The stored AlertEvent is the in-app notification; history lists it.
        logger.info(
            "alert_in_app: org=%s rule=%s event=%s account=%s reason=%s",
            event.organization_id,
            rule.id,
            event.id,
            event.account_id,
            event.reason,
        )
        return True

    def send_email(
        self, rule: AlertRule, event: AlertEvent, account_name: str | None, channels: AlertChannels
    ) -> bool:
        settings = self.settings
        recipient = settings.alert_email_to
        if not recipient:
            logger.warning("alert_email_skipped: no recipient configured")
            return False
        if not settings.smtp_host:
            logger.warning("alert_email_skipped: SMTP host not configured")
            return False

        text_body = build_text(rule, event, account_name)
        msg = MIMEMultipart("alternative")
        msg["Subject"] = build_subject(rule, event, account_name)
        msg["From"] = settings.smtp_from
        msg["To"] = recipient
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(
            MIMEText(f"<html><body><pre>{html.escape(text_body)}</pre></body></html>", "html")
        )

        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
                server.starttls()
                if settings.smtp_user:
                    server.login(settings.smtp_user, settings.smtp_password)
                server.sendmail(msg["From"], [recipient], msg.as_string())
            logger.info("alert_email_sent: recipient=%s event=%s", recipient, event.id)
            return True
        except smtplib.SMTPAuthenticationError:
            logger.error("alert_email_auth_failed: could not authenticate with SMTP server")
            return False
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("alert_email_failed: %s", exc)
            return False

    def send_slack(
        self, rule: AlertRule, event: AlertEvent, account_name: str | None, channels: AlertChannels
    ) -> bool:
        url = self.settings.slack_webhook_url
        if not url:
            logger.warning("alert_slack_skipped: SLACK_WEBHOOK_URL not configured")
            return False
        payload: dict = {"text": build_text(rule, event, account_name)}
        if channels.slack_channel:
            payload["channel"] = channels.slack_channel

        for attempt in range(SLACK_ATTEMPTS):
            try:
                response = httpx.post(url, json=payload, timeout=self.settings.slack_timeout)
                response.raise_for_status()
                logger.info("alert_slack_sent: event=%s", event.id)
                return True
            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                if attempt < SLACK_ATTEMPTS - 1:
                    logger.warning("Slack attempt %d failed: %s, retrying", attempt + 1, exc)
                    continue
                logger.error("alert_slack_failed after retry: %s", exc)
                return False
            except httpx.HTTPStatusError as exc:
                logger.error("alert_slack_failed: HTTP %s", exc.response.status_code)
                return False
            except httpx.HTTPError as exc:
                logger.error("alert_slack_failed: %s", exc)
                return False
        return False


_dispatcher: AlertDispatcher | None = None


def get_dispatcher() -> AlertDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = AlertDispatcher()
    return _dispatcher
