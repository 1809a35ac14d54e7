"""URL configuration for volume app."""

from django.urls import path

from server.apps.volume import views

app_name = 'volume'

urlpatterns = [
    path('files', views.files, name='files'),
    path('folders', views.folders, name='folders'),
]
