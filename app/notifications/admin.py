"""
Django admin configuration for notifications.
"""

from django.contrib import admin

from notifications.models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    """Read-mostly admin for auditing what users were told."""

    list_display = ("id", "recipient", "notification_type", "title", "is_read", "email_status", "created_at")
    list_filter = ("notification_type", "is_read", "email_status")
    search_fields = ("recipient__email", "title", "idempotency_key")
    raw_id_fields = ("recipient",)
    readonly_fields = ("created_at", "updated_at", "read_at", "emailed_at")
    date_hierarchy = "created_at"
