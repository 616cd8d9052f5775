"""
Factory Boy factories for notification models.

Usage:
    from notifications.tests.factories import NotificationFactory

    notification = NotificationFactory(recipient=user, is_read=False)
"""

import factory

from authentication.tests.factories import UserFactory


class NotificationFactory(factory.django.DjangoModelFactory):
    """
    Factory for Notification model.

    Examples:
        notification = NotificationFactory()
        notification = NotificationFactory(notification_type="refund_processed")
        notification = NotificationFactory(email_status="pending")
    """

    class Meta:
        model = "notifications.Notification"

    recipient = factory.SubFactory(UserFactory)
    notification_type = "payment_succeeded"
    title = factory.Faker("sentence", nb_words=4)
    body = factory.Faker("paragraph", nb_sentences=2)
    data = factory.LazyFunction(dict)
    is_read = False
