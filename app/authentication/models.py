"""
Authentication models.

The payment engine needs three things from a user: an identity to own
transactions, a display name for notifications, and a role that decides who
may review manual payment proofs.

Related files:
    - managers.py: Custom user manager for email-based creation

Security:
    - User passwords hashed with Django's configured hasher
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class UserRole(models.TextChoices):
    """Platform roles. ADMIN and MODERATOR may review manual payments."""

    USER = "USER", "User"
    ADMIN = "ADMIN", "Admin"
    MODERATOR = "MODERATOR", "Moderator"


REVIEWER_ROLES = frozenset({UserRole.ADMIN, UserRole.MODERATOR})


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login
        full_name: Display name used in notifications
        role: Platform role (USER, ADMIN, MODERATOR)
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
        updated_at: When the user record was last modified

    Usage:
        reviewer = User.objects.create_user(
            email="ops@example.com",
            password="securepassword",
            role=UserRole.MODERATOR,
        )
        reviewer.is_payment_reviewer  # True
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    full_name = models.CharField(
        max_length=150,
        blank=True,
        help_text="Display name",
    )
    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.USER,
        db_index=True,
        help_text="Platform role; ADMIN and MODERATOR review manual payments",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    def get_full_name(self):
        return self.full_name or self.email

    def get_short_name(self):
        return self.full_name.split(" ")[0] if self.full_name else self.email.split("@")[0]

    @property
    def is_payment_reviewer(self) -> bool:
        """Whether this user may approve or reject manual payment proofs."""
        return self.is_active and self.role in REVIEWER_ROLES
