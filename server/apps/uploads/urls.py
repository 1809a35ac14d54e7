"""URL configuration for uploads app."""

from django.urls import path

from server.apps.uploads import views

app_name = 'uploads'

urlpatterns = [
    path('hooks/tus/', views.tus_hook, name='tus_hook'),
    path('api/uploads/parts', views.part_policy, name='part_policy'),
]
