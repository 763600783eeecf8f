# apps/notifications/models.py

from django.conf import settings
from django.db import models

from apps.utils.models import TimestampedModel


class NotificationChannel(models.TextChoices):
    IN_APP = "in_app", "In App"
    EMAIL = "email", "Email"


class NotificationStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    SENT = "sent", "Sent"
    FAILED = "failed", "Failed"


class NotificationTemplate(TimestampedModel):
    """
    Template for a notification type, ${var} placeholders.

    Keys used by the order flow:
    - order_placed_vendor
    - sub_order_status_buyer
    - order_paid_vendor
    - reception_confirmed_vendor
    - order_cancelled_vendor
    """

    key = models.CharField(max_length=100, unique=True, db_index=True)

    channel = models.CharField(
        max_length=20,
        choices=NotificationChannel.choices,
        default=NotificationChannel.IN_APP,
    )

    title_template = models.CharField(max_length=255, blank=True)
    body_template = models.TextField()

    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["key"]

    def __str__(self):
        return f"[{self.channel}] {self.key}"


class Notification(TimestampedModel):
    """
    Single notification instance (inbox row).
    Created synchronously, delivered by send_notification_task.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )

    template = models.ForeignKey(
        NotificationTemplate,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="notifications",
    )

    channel = models.CharField(
        max_length=20,
        choices=NotificationChannel.choices,
        default=NotificationChannel.IN_APP,
    )

    title = models.CharField(max_length=255, blank=True)
    body = models.TextField()

    data = models.JSONField(default=dict, blank=True)

    status = models.CharField(
        max_length=20,
        choices=NotificationStatus.choices,
        default=NotificationStatus.PENDING,
        db_index=True,
    )
    error_message = models.TextField(blank=True)

    is_read = models.BooleanField(default=False)

    sent_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "is_read", "created_at"], name="notification_inbox_idx"),
        ]

    def __str__(self):
        return f"{self.user_id} [{self.channel}] {self.title or self.template_id}"
