from rest_framework import serializers

from .models import TaskDependency
from .productivity import PERIOD_CURRENT_WEEK, PERIOD_LAST_WEEK


class ForecastSerializer(serializers.Serializer):
    task_id = serializers.IntegerField()
    predicted_date = serializers.DateField()
    risk_level = serializers.ChoiceField(choices=["low", "medium", "high"])
    confidence = serializers.IntegerField()
    explanation = serializers.CharField()


class ForecastBatchSerializer(serializers.Serializer):
    task_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False, max_length=200)


class DependencyInputSerializer(serializers.Serializer):
    depends_on_task_id = serializers.IntegerField(min_value=1)
    dependency_type = serializers.ChoiceField(
        choices=[c[0] for c in TaskDependency.TYPE_CHOICES],
        default=TaskDependency.FINISH_TO_START,
    )


class TaskDependencySerializer(serializers.ModelSerializer):
    task_id = serializers.IntegerField(read_only=True)
    depends_on_task_id = serializers.IntegerField(read_only=True)
    depends_on_title = serializers.CharField(source="depends_on_task.title", read_only=True)
    depends_on_status = serializers.CharField(source="depends_on_task.status", read_only=True)

    class Meta:
        model = TaskDependency
        fields = [
            "id", "task_id", "depends_on_task_id", "depends_on_title", "depends_on_status",
            "dependency_type", "created_at",
        ]


class PeriodSerializer(serializers.Serializer):
    period = serializers.ChoiceField(choices=[PERIOD_CURRENT_WEEK, PERIOD_LAST_WEEK], default=PERIOD_CURRENT_WEEK)


class TaskDependentSerializer(serializers.ModelSerializer):
    task_id = serializers.IntegerField(read_only=True)
    depends_on_task_id = serializers.IntegerField(read_only=True)
    task_title = serializers.CharField(source="task.title", read_only=True)
    task_status = serializers.CharField(source="task.status", read_only=True)

    class Meta:
        model = TaskDependency
        fields = ["id", "task_id", "depends_on_task_id", "task_title", "task_status", "dependency_type", "created_at"]
