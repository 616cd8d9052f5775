"""
Serializers for the notifications API.
"""

from rest_framework import serializers

from notifications.models import Notification


class NotificationSerializer(serializers.ModelSerializer):
    """
    Read-only serializer for Notification.

    Usage:
        serializer = NotificationSerializer(notifications, many=True)
    """

    class Meta:
        model = Notification
        fields = [
            "id",
            "notification_type",
            "title",
            "body",
            "action_url",
            "data",
            "is_read",
            "read_at",
            "created_at",
        ]
        read_only_fields = fields


class UnreadCountSerializer(serializers.Serializer):
    """Response serializer for the unread badge count."""

    unread_count = serializers.IntegerField()


class MarkAllReadResponseSerializer(serializers.Serializer):
    """Response serializer for mark-all-as-read."""

    marked_count = serializers.IntegerField()
