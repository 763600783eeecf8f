# apps/notifications/services.py
import logging
from string import Template

from django.db import transaction

from .models import (
    NotificationTemplate,
    Notification,
    NotificationChannel,
    NotificationStatus,
)

logger = logging.getLogger(__name__)


def _render_template(template: NotificationTemplate, context: dict | None) -> tuple[str, str]:
    """
    Render title/body using ${var} placeholders. Unknown vars stay as-is.
    """
    context = context or {}
    title = Template(template.title_template or "").safe_substitute(**context)
    body = Template(template.body_template or "").safe_substitute(**context)
    return title, body


def get_or_create_default_template(key: str, channel: str, title: str, body: str) -> NotificationTemplate:
    """
    Ensures a template exists for `key`, so a missing one never blocks an event.
    """
    template, _ = NotificationTemplate.objects.get_or_create(
        key=key,
        defaults={
            "channel": channel,
            "title_template": title,
            "body_template": body,
            "is_active": True,
        },
    )
    return template


def notify_user(
    user,
    event_key: str,
    context: dict | None = None,
    *,
    channel: str | None = None,
    extra_data: dict | None = None,
    template_fallback_title: str = "",
    template_fallback_body: str = "",
) -> Notification | None:
    """
    Main entry point for other apps.

        notify_user(
            user=sub_order.vendor,
            event_key="order_placed_vendor",
            context={"order_number": order.number},
        )

    Creates the Notification row and schedules delivery after commit.
    Returns None when the template is switched off.
    """
    from .tasks import send_notification_task

    if not user:
        return None

    template = NotificationTemplate.objects.filter(key=event_key).first()
    if template is None:
        template = get_or_create_default_template(
            key=event_key,
            channel=channel or NotificationChannel.IN_APP,
            title=template_fallback_title,
            body=template_fallback_body or event_key,
        )
    if not template.is_active:
        logger.info(f"Notification {event_key} for user {user.pk} skipped (template disabled)")
        return None

    title, body = _render_template(template, context)

    notification = Notification.objects.create(
        user=user,
        template=template,
        channel=channel or template.channel,
        title=title,
        body=body,
        data=extra_data or {},
        status=NotificationStatus.PENDING,
    )

    transaction.on_commit(lambda: send_notification_task.delay(str(notification.id)))
    return notification
