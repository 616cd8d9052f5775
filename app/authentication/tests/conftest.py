"""
Test configuration and fixtures for authentication tests.
"""

import pytest
from rest_framework.test import APIClient

from authentication.models import User
from authentication.tests.factories import ReviewerFactory, UserFactory


@pytest.fixture
def user(db):
    """Regular active user with a known password."""
    return UserFactory(email="payer@example.com", password="TestPass123!")


@pytest.fixture
def reviewer(db):
    """ADMIN-role user."""
    return ReviewerFactory()


@pytest.fixture
def superuser(db):
    """Superuser created through the manager."""
    return User.objects.create_superuser(email="root@example.com", password="AdminPass123!")


@pytest.fixture
def api_client():
    """Unauthenticated API client for public endpoints."""
    return APIClient()
