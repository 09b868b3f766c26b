from django.urls import path

from . import views

urlpatterns = [
    path("forecast/task/<int:task_id>/", views.TaskForecast.as_view(), name="task-forecast"),
    path("forecast/tasks/", views.TaskForecastBatch.as_view(), name="task-forecast-batch"),
    path("tasks/<int:task_id>/dependencies/", views.TaskDependencies.as_view(), name="task-dependencies"),
    path("tasks/<int:task_id>/dependents/", views.TaskDependents.as_view(), name="task-dependents"),
    path(
        "tasks/<int:task_id>/dependencies/<int:depends_on_id>/",
        views.TaskDependencyDetail.as_view(),
        name="task-dependency-detail",
    ),
    path(
        "projects/<int:project_id>/dependency-cycles/",
        views.ProjectDependencyCycles.as_view(),
        name="project-dependency-cycles",
    ),
    path(
        "productivity/project/<int:project_id>/",
        views.ProjectProductivity.as_view(),
        name="project-productivity",
    ),
    path("productivity/user/<int:user_id>/", views.UserProductivity.as_view(), name="user-productivity"),
]
