from __future__ import annotations

from django.urls import path

from . import views

app_name = "properties"

urlpatterns = [
    path("", views.property_list_view, name="list"),
    path("map-data/", views.property_map_data_view, name="map-data"),
    path("dashboard/", views.landlord_dashboard_view, name="dashboard"),
    path("<int:property_id>/", views.property_detail_view, name="detail"),
]
