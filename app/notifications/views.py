"""
Views for the notification inbox API.

Endpoints:
    GET  /api/v1/notifications/               - List user's notifications
    GET  /api/v1/notifications/{id}/          - Notification detail
    GET  /api/v1/notifications/unread-count/  - Unread badge count
    POST /api/v1/notifications/{id}/read/     - Mark single notification as read
    POST /api/v1/notifications/read-all/      - Mark all notifications as read
"""

from __future__ import annotations

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema, extend_schema_view
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from notifications.models import Notification
from notifications.serializers import (
    MarkAllReadResponseSerializer,
    NotificationSerializer,
    UnreadCountSerializer,
)
from notifications.services import NotificationService


@extend_schema_view(
    list=extend_schema(
        operation_id="list_notifications",
        summary="List notifications",
        parameters=[
            OpenApiParameter(
                name="is_read",
                type=bool,
                location=OpenApiParameter.QUERY,
                description="Filter by read status (true/false)",
                required=False,
            ),
            OpenApiParameter(
                name="type",
                type=str,
                location=OpenApiParameter.QUERY,
                description="Filter by notification type key",
                required=False,
            ),
        ],
        tags=["Notifications"],
    ),
    retrieve=extend_schema(
        operation_id="get_notification",
        summary="Get notification",
        tags=["Notifications"],
    ),
)
class NotificationViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Inbox operations for the authenticated user.

    Users can only access their own notifications.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = NotificationSerializer

    def get_queryset(self):
        queryset = Notification.objects.filter(recipient=self.request.user)

        is_read = self.request.query_params.get("is_read")
        if is_read is not None:
            queryset = queryset.filter(is_read=is_read.lower() == "true")

        type_key = self.request.query_params.get("type")
        if type_key:
            queryset = queryset.filter(notification_type=type_key)

        return queryset

    @extend_schema(
        operation_id="get_unread_notification_count",
        summary="Get unread notification count",
        responses={200: UnreadCountSerializer},
        tags=["Notifications"],
    )
    @action(detail=False, methods=["get"], url_path="unread-count")
    def unread_count(self, request):
        count = Notification.objects.filter(recipient=request.user, is_read=False).count()
        return Response(UnreadCountSerializer({"unread_count": count}).data)

    @extend_schema(
        operation_id="mark_notification_read",
        summary="Mark notification as read",
        responses={
            200: NotificationSerializer,
            404: OpenApiResponse(description="Notification not found"),
        },
        tags=["Notifications"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        """Mark single notification as read. Idempotent."""
        try:
            notification = Notification.objects.get(pk=pk, recipient=request.user)
        except Notification.DoesNotExist:
            return Response({"detail": "Not found."}, status=status.HTTP_404_NOT_FOUND)

        result = NotificationService.mark_as_read(notification, request.user)
        if not result.success:
            return Response({"detail": result.error}, status=status.HTTP_400_BAD_REQUEST)

        return Response(self.get_serializer(result.data).data)

    @extend_schema(
        operation_id="mark_all_notifications_read",
        summary="Mark all notifications as read",
        responses={200: MarkAllReadResponseSerializer},
        tags=["Notifications"],
    )
    @action(detail=False, methods=["post"], url_path="read-all")
    def read_all(self, request):
        result = NotificationService.mark_all_as_read(request.user)
        return Response(MarkAllReadResponseSerializer({"marked_count": result.data}).data)
