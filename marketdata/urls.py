from django.urls import path

from . import views

app_name = "marketdata"

urlpatterns = [
    path("assets/", views.asset_catalog, name="asset_catalog"),
]
