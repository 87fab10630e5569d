from __future__ import annotations

from django.urls import path

from . import views

app_name = "saved"

urlpatterns = [
    path("", views.saved_list_view, name="list"),
    path("save/", views.save_property_view, name="save"),
    path("unsave/", views.unsave_property_view, name="unsave"),
]
