"""
Tests for notifications app.

- test_services.py: NotificationService tests
- test_tasks.py: Email delivery task tests
- test_views.py: Inbox API endpoint tests
"""
