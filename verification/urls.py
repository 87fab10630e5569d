from __future__ import annotations

from django.urls import path

from . import views

app_name = "verification"

urlpatterns = [
    path("submit/", views.verification_submit_view, name="submit"),
]
