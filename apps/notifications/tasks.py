import logging
from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction
from django.utils import timezone

from .models import Notification, NotificationChannel, NotificationStatus

logger = logging.getLogger(__name__)


def _send_email_notification(notification: Notification) -> bool:
    email = notification.user.email
    if not email:
        logger.warning(f"Cannot send email: User {notification.user_id} has no email address.")
        return False

    send_mail(
        subject=notification.title or settings.PROJECT_NAME,
        message=notification.body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[email],
    )
    logger.info(f"Email notification {notification.id} sent to user {notification.user_id}")
    return True


@shared_task(bind=True, max_retries=3, default_retry_delay=10)
def send_notification_task(self, notification_id: str):
    try:
        with transaction.atomic():
            # Lock the row so a retry never delivers twice
            notification = Notification.objects.select_for_update().get(id=notification_id)

            if notification.status == NotificationStatus.SENT:
                return

            if notification.channel == NotificationChannel.EMAIL:
                delivered = _send_email_notification(notification)
            else:
                # In-app rows are delivered by being stored
                delivered = True

            notification.status = NotificationStatus.SENT if delivered else NotificationStatus.FAILED
            notification.sent_at = timezone.now()
            notification.save(update_fields=["status", "sent_at"])

    except Notification.DoesNotExist:
        logger.error(f"Notification {notification_id} not found.")
    except Exception as exc:
        logger.exception(f"Failed to send notification {notification_id}")
        Notification.objects.filter(id=notification_id).update(
            status=NotificationStatus.FAILED, error_message=str(exc)[:1000]
        )
        raise self.retry(exc=exc)
