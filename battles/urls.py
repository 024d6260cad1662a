from django.urls import path

from . import views

app_name = "battles"

urlpatterns = [
    path("", views.battle_list, name="list"),
    path("create/", views.battle_create, name="create"),
    path("join/", views.battle_join, name="join"),
    path("history/", views.battle_history_view, name="history"),
    path("<int:battle_id>/", views.battle_detail, name="detail"),
    path("<int:battle_id>/archive/", views.battle_archive, name="archive"),
]
