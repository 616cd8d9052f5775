"""
Authentication application.

Provides the email-identified User with a platform role. JWT token
endpoints come from djangorestframework-simplejwt (see urls.py).

Usage:
    from authentication.models import User, UserRole
"""
