"""
URL configuration for the visitor outreach monitoring service.
"""
from django.contrib import admin
from django.urls import path, include
from django.http import HttpResponse


def health_check(request):
    """Health check endpoint for the deployment platform."""
    return HttpResponse('OK', content_type='text/plain')


urlpatterns = [
    path('health/', health_check, name='health_check'),  # Health check first
    path('admin/', admin.site.urls),
    path('accounts/', include('django.contrib.auth.urls')),
    path('api/outreach/', include('outreach.urls')),
]
