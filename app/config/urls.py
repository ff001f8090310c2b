"""
Root URL configuration.

The seller-funds core is driven by background jobs and service calls, so the
HTTP surface is limited to operator tooling.

URL Structure:
    /admin/   - Django admin (settlements, payouts, invoices, ledger)
    /health/  - Health check endpoint (load balancers, Docker)
"""

from django.contrib import admin
from django.urls import path

from core.views import health_check

urlpatterns = [
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health-check"),
]
