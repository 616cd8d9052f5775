"""
URL configuration for authentication app.

URL structure:
    /api/v1/auth/token/           - Obtain JWT access/refresh pair
    /api/v1/auth/token/refresh/   - Refresh an access token
"""

from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

app_name = "authentication"

urlpatterns = [
    path("token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
]
