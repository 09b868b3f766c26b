# views.py
import logging
from typing import Optional

from django.contrib.auth import get_user_model
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .dependencies import (
    DependencyError,
    add_dependency,
    detect_circular_dependencies,
    project_dependency_graph,
    remove_dependency,
)
from .forecasting import predict_many, predict_task_completion
from .models import Project, Task, TaskDependency
from .productivity import project_productivity, user_productivity, week_period
from .serializers import (
    DependencyInputSerializer,
    ForecastBatchSerializer,
    ForecastSerializer,
    PeriodSerializer,
    TaskDependencySerializer,
    TaskDependentSerializer,
)

logger = logging.getLogger(__name__)


def not_found(what: str) -> Response:
    return Response({"error": f"{what} not found"}, status=status.HTTP_404_NOT_FOUND)


def _period_from_request(request):
    """Validate ?period= and return the (start, end) dates it covers."""
    serializer = PeriodSerializer(data=request.query_params)
    serializer.is_valid(raise_exception=True)
    return week_period(serializer.validated_data["period"])


class TaskForecast(APIView):
    """
    GET /api/forecast/task/<id>/
    Returns the predicted completion date, risk level, confidence and explanation.
    """

    def get(self, request, task_id: int):
        forecast = predict_task_completion(task_id)
        if forecast is None:
            return not_found("Task")
        return Response(ForecastSerializer(forecast).data, status=status.HTTP_200_OK)


class TaskForecastBatch(APIView):
    """
    POST /api/forecast/tasks/
    Accepts {"task_ids": [...]} and returns {"data": {id: forecast | null}}.
    """

    def post(self, request):
        serializer = ForecastBatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        forecasts = predict_many(serializer.validated_data["task_ids"])
        data = {
            str(tid): (ForecastSerializer(f).data if f is not None else None)
            for tid, f in forecasts.items()
        }
        return Response({"data": data}, status=status.HTTP_200_OK)


class TaskDependencies(APIView):
    """
    GET  /api/tasks/<id>/dependencies/  -> prerequisites of the task
    POST /api/tasks/<id>/dependencies/  -> add a prerequisite
    """

    def get(self, request, task_id: int):
        if not Task.objects.filter(pk=task_id).exists():
            return not_found("Task")
        edges = (
            TaskDependency.objects.filter(task_id=task_id)
            .select_related("depends_on_task")
            .order_by("-created_at", "-pk")
        )
        return Response(TaskDependencySerializer(edges, many=True).data, status=status.HTTP_200_OK)

    def post(self, request, task_id: int):
        serializer = DependencyInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        task: Optional[Task] = Task.objects.filter(pk=task_id).first()
        depends_on: Optional[Task] = Task.objects.filter(pk=serializer.validated_data["depends_on_task_id"]).first()
        if task is None or depends_on is None:
            return not_found("Task")

        try:
            edge = add_dependency(
                task,
                depends_on,
                created_by=request.user,
                dependency_type=serializer.validated_data["dependency_type"],
            )
        except DependencyError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        task.refresh_from_db(fields=["status"])
        body = TaskDependencySerializer(edge).data
        body["task_status"] = task.status
        return Response(body, status=status.HTTP_201_CREATED)


class TaskDependents(APIView):
    """
    GET /api/tasks/<id>/dependents/
    Tasks that cannot start until this one is completed.
    """

    def get(self, request, task_id: int):
        if not Task.objects.filter(pk=task_id).exists():
            return not_found("Task")
        edges = (
            TaskDependency.objects.filter(depends_on_task_id=task_id)
            .select_related("task")
            .order_by("-created_at", "-pk")
        )
        return Response(TaskDependentSerializer(edges, many=True).data, status=status.HTTP_200_OK)


class TaskDependencyDetail(APIView):
    """
    DELETE /api/tasks/<id>/dependencies/<depends_on_id>/
    """

    def delete(self, request, task_id: int, depends_on_id: int):
        if not remove_dependency(task_id, depends_on_id):
            return not_found("Dependency")
        return Response(status=status.HTTP_204_NO_CONTENT)


class ProjectDependencyCycles(APIView):
    """
    GET /api/projects/<id>/dependency-cycles/
    Lists every circular dependency chain among the project's tasks.
    """

    def get(self, request, project_id: int):
        if not Project.objects.filter(pk=project_id).exists():
            return not_found("Project")
        cycles = detect_circular_dependencies(project_dependency_graph(project_id))
        if cycles:
            logger.warning("project %s has %d dependency cycle(s)", project_id, len(cycles))
        return Response({"cycles": cycles}, status=status.HTTP_200_OK)


class ProjectProductivity(APIView):
    """
    GET /api/productivity/project/<id>/?period=current_week|last_week
    """

    def get(self, request, project_id: int):
        if not Project.objects.filter(pk=project_id).exists():
            return not_found("Project")
        start, end = _period_from_request(request)
        report = project_productivity(project_id, start, end)
        return Response(report, status=status.HTTP_200_OK)


class UserProductivity(APIView):
    """
    GET /api/productivity/user/<id>/?period=current_week|last_week
    """

    def get(self, request, user_id: int):
        if not get_user_model().objects.filter(pk=user_id).exists():
            return not_found("User")
        start, end = _period_from_request(request)
        report = user_productivity(user_id, start, end)
        return Response(report, status=status.HTTP_200_OK)
