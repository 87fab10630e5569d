from __future__ import annotations

from django.urls import path

from . import views

app_name = "messaging"

urlpatterns = [
    path("", views.inbox_view, name="inbox"),
    path("overlay/", views.overlay_view, name="overlay"),
    path("send/", views.send_view, name="send"),
    path("read/", views.read_view, name="read"),
    path("changes/", views.changes_view, name="changes"),
    path("inquire/<int:property_id>/", views.inquire_view, name="inquire"),
    path("property/<int:property_id>/", views.property_inquiries_view, name="property-inquiries"),
]
