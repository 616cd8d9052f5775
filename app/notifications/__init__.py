"""
Notifications app: in-app inbox plus email copies.

This app provides:
- Notification model for storing user notifications
- NotificationService for centralized notification creation
- Celery task for email delivery
- REST API for listing notifications and marking them read

Usage:
    from notifications.services import NotificationService

    result = NotificationService.create_notification(
        recipient=user,
        notification_type="refund_processed",
        title="Refund Processed",
        body="MYR 30.00 has been refunded.",
    )
"""
