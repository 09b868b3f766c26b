from django.conf import settings
from django.db import models

STATUS_PENDING = "pending"
STATUS_WAITING = "waiting"
STATUS_COMPLETED = "completed"


class Project(models.Model):
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name


class Task(models.Model):
    PRIORITY_CHOICES = [
        ("low", "Low"),
        ("medium", "Medium"),
        ("high", "High"),
        ("urgent", "Urgent"),
    ]

    project = models.ForeignKey(Project, related_name="tasks", on_delete=models.CASCADE, null=True, blank=True)
    title = models.CharField(max_length=255)
    # free-text state; only "completed" and "waiting" carry meaning here
    status = models.CharField(max_length=50, default=STATUS_PENDING)
    priority = models.CharField(max_length=16, choices=PRIORITY_CHOICES, default="medium")
    estimated_hours = models.FloatField(default=0)
    actual_hours = models.FloatField(null=True, blank=True)
    due_date = models.DateField(null=True, blank=True)
    planned_date = models.DateField(null=True, blank=True)  # focus date
    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    assignees = models.ManyToManyField(settings.AUTH_USER_MODEL, related_name="assigned_tasks", blank=True)

    def __str__(self):
        return self.title

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED


class TaskDependency(models.Model):
    """Directed edge: ``task`` cannot start until ``depends_on_task`` is completed."""

    FINISH_TO_START = "finish_to_start"
    TYPE_CHOICES = [(FINISH_TO_START, "Finish to start")]

    task = models.ForeignKey(Task, related_name="dependencies", on_delete=models.CASCADE)
    depends_on_task = models.ForeignKey(Task, related_name="dependents", on_delete=models.CASCADE)
    dependency_type = models.CharField(max_length=32, choices=TYPE_CHOICES, default=FINISH_TO_START)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="created_dependencies",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["task", "depends_on_task"], name="uq_task_depends_on"),
        ]

    def __str__(self):
        return f"{self.task_id} -> {self.depends_on_task_id}"
