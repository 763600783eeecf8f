# apps/notifications/admin.py
from django.contrib import admin

from .models import NotificationTemplate, Notification


@admin.register(NotificationTemplate)
class NotificationTemplateAdmin(admin.ModelAdmin):
    list_display = ("key", "channel", "is_active")
    search_fields = ("key", "title_template", "body_template")
    list_filter = ("channel", "is_active")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("user", "channel", "title", "status", "is_read", "created_at", "sent_at")
    list_filter = ("channel", "status", "is_read")
    search_fields = ("title", "body", "user__email")
    readonly_fields = (
        "user",
        "template",
        "channel",
        "title",
        "body",
        "data",
        "status",
        "error_message",
        "sent_at",
    )
