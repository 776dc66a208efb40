"""URL configuration for the orchestration app."""

from django.urls import path

from apps.orchestration.views import PushHookView, RunCancelView, RunListView, RunStatusView

app_name = "orchestration"

urlpatterns = [
    # Run endpoints
    path("runs/", RunListView.as_view(), name="run-list"),
    path("runs/<str:run_id>/", RunStatusView.as_view(), name="run-status"),
    path("runs/<str:run_id>/cancel/", RunCancelView.as_view(), name="run-cancel"),
    # Trigger hooks
    path(
        "targets/<str:cluster>/<str:namespace>/<str:workload>/hooks/push/",
        PushHookView.as_view(),
        name="push-hook",
    ),
]
