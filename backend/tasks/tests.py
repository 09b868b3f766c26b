from datetime import date, datetime, timedelta, timezone as dt_timezone
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from .dependencies import (
    DependencyError,
    add_dependency,
    detect_circular_dependencies,
    is_task_blocked,
    project_dependency_graph,
    remove_dependency,
    would_create_cycle,
)
from .forecasting import (
    add_business_days,
    business_days_between,
    pessimism_factor,
    predict_many,
    predict_task_completion,
)
from .models import Project, Task, TaskDependency
from .productivity import calculate_productivity, urgent_response_points, week_period

MONDAY = date(2026, 10, 19)
FRIDAY = date(2026, 10, 23)


def at(d: date, hour: int = 12) -> datetime:
    return datetime(d.year, d.month, d.day, hour, tzinfo=dt_timezone.utc)


class BusinessDayTests(TestCase):
    def test_add_business_days_within_week(self):
        self.assertEqual(add_business_days(MONDAY, 2), date(2026, 10, 21))

    def test_add_business_days_skips_weekend(self):
        self.assertEqual(add_business_days(FRIDAY, 1), date(2026, 10, 26))
        self.assertEqual(add_business_days(FRIDAY, 2), date(2026, 10, 27))

    def test_add_business_days_from_saturday(self):
        self.assertEqual(add_business_days(date(2026, 10, 24), 1), date(2026, 10, 26))

    def test_add_zero_business_days_is_identity(self):
        self.assertEqual(add_business_days(MONDAY, 0), MONDAY)

    def test_business_days_between(self):
        self.assertEqual(business_days_between(FRIDAY, date(2026, 10, 26)), 1)
        self.assertEqual(business_days_between(date(2026, 10, 22), date(2026, 10, 26)), 2)
        self.assertEqual(business_days_between(MONDAY, MONDAY), 0)
        self.assertEqual(business_days_between(FRIDAY, MONDAY), 0)

    def test_business_days_between_from_weekend_due_date(self):
        self.assertEqual(business_days_between(date(2026, 10, 24), date(2026, 10, 28)), 2)
        self.assertEqual(business_days_between(date(2026, 10, 25), date(2026, 10, 28)), 2)


class ForecastTests(TestCase):
    def setUp(self):
        self.project = Project.objects.create(name="Website")
        User = get_user_model()
        self.alice = User.objects.create_user(username="alice", password="x")
        self.bob = User.objects.create_user(username="bob", password="x")

    def make_task(self, **kwargs):
        kwargs.setdefault("title", "Task")
        kwargs.setdefault("project", self.project)
        return Task.objects.create(**kwargs)

    def make_history(self, user, estimated, actual, completed_on):
        t = self.make_task(
            title="Done",
            status="completed",
            estimated_hours=estimated,
            actual_hours=actual,
            completed_at=at(completed_on),
        )
        t.assignees.add(user)
        return t

    def test_unassigned_task_uses_estimate_over_workday(self):
        """16 estimated hours with nobody assigned -> 2 business days."""
        task = self.make_task(estimated_hours=16)
        result = predict_task_completion(task.pk, today=MONDAY)

        self.assertEqual(result["task_id"], task.pk)
        self.assertEqual(result["predicted_date"], add_business_days(MONDAY, 2))
        self.assertEqual(result["confidence"], 65)
        self.assertEqual(result["risk_level"], "low")
        self.assertEqual(result["explanation"], "No assignee to gauge velocity")

    def test_prediction_skips_weekend(self):
        task = self.make_task(estimated_hours=16)
        result = predict_task_completion(task.pk, today=FRIDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 27))

    def test_missing_estimate_defaults_to_one_day(self):
        task = self.make_task()
        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 20))

    def test_partial_day_rounds_up(self):
        task = self.make_task(estimated_hours=9)
        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 21))

    def test_unresolved_dependency_gates_start(self):
        blocker = self.make_task(title="Blocker", due_date=MONDAY + timedelta(days=5))
        task = self.make_task(estimated_hours=16)
        TaskDependency.objects.create(task=task, depends_on_task=blocker)

        result = predict_task_completion(task.pk, today=MONDAY)

        self.assertGreaterEqual(result["predicted_date"], add_business_days(blocker.due_date, 2))
        self.assertEqual(result["predicted_date"], date(2026, 10, 27))
        self.assertEqual(result["confidence"], 85 - 15 - 20)
        self.assertTrue(result["explanation"].startswith("Dependent on incomplete tasks"))

    def test_dependency_without_due_date_pushes_to_tomorrow(self):
        blocker = self.make_task(title="Blocker")
        task = self.make_task(estimated_hours=8)
        TaskDependency.objects.create(task=task, depends_on_task=blocker)

        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 21))

    def test_latest_unresolved_dependency_wins(self):
        early = self.make_task(title="Early", due_date=date(2026, 10, 21))
        late = self.make_task(title="Late", due_date=date(2026, 10, 28))
        task = self.make_task(estimated_hours=8)
        TaskDependency.objects.create(task=task, depends_on_task=early)
        TaskDependency.objects.create(task=task, depends_on_task=late)

        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 29))

    def test_past_dependency_due_date_does_not_move_start_back(self):
        blocker = self.make_task(title="Overdue", due_date=MONDAY - timedelta(days=10))
        task = self.make_task(estimated_hours=8)
        TaskDependency.objects.create(task=task, depends_on_task=blocker)

        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 20))
        self.assertEqual(result["confidence"], 50)

    def test_completed_dependency_is_ignored(self):
        blocker = self.make_task(title="Blocker", status="completed", due_date=MONDAY + timedelta(days=20))
        task = self.make_task(estimated_hours=16)
        TaskDependency.objects.create(task=task, depends_on_task=blocker)

        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 21))
        self.assertEqual(result["confidence"], 65)
        self.assertNotIn("Dependent on incomplete tasks", result["explanation"])

    def test_velocity_scales_estimate(self):
        """Ratios 1.0 and 2.0 average to 1.5: 16h -> 24h -> 3 days."""
        self.make_history(self.alice, 4, 4, MONDAY - timedelta(days=3))
        self.make_history(self.bob, 4, 8, MONDAY - timedelta(days=2))
        task = self.make_task(estimated_hours=16)
        task.assignees.add(self.alice, self.bob)

        result = predict_task_completion(task.pk, today=MONDAY)

        self.assertEqual(result["predicted_date"], date(2026, 10, 22))
        self.assertEqual(result["confidence"], 85)
        self.assertEqual(result["explanation"], "Based on average team velocity")

    def test_history_without_actuals_uses_default_factor(self):
        self.make_history(self.alice, 4, None, MONDAY - timedelta(days=1))
        task = self.make_task(estimated_hours=16)
        task.assignees.add(self.alice)

        # 16 * 1.2 / 8 = 2.4 -> 3 days
        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 22))

    def test_no_history_keeps_baseline(self):
        task = self.make_task(estimated_hours=16)
        task.assignees.add(self.alice)

        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 21))
        self.assertEqual(result["confidence"], 85)

    def test_only_ten_most_recent_completed_tasks_count(self):
        self.make_history(self.alice, 1, 10, MONDAY - timedelta(days=60))
        for i in range(10):
            self.make_history(self.alice, 4, 4, MONDAY - timedelta(days=i + 1))
        task = self.make_task(estimated_hours=16)
        task.assignees.add(self.alice)

        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 21))

    def test_unrelated_users_history_is_ignored(self):
        self.make_history(self.bob, 4, 40, MONDAY - timedelta(days=1))
        task = self.make_task(estimated_hours=16)
        task.assignees.add(self.alice)

        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 21))

    def test_velocity_without_estimate_keeps_one_day(self):
        self.make_history(self.alice, 4, 8, MONDAY - timedelta(days=1))
        task = self.make_task()
        task.assignees.add(self.alice)

        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 20))

    def test_small_slip_is_medium_risk(self):
        task = self.make_task(estimated_hours=16, due_date=MONDAY)
        result = predict_task_completion(task.pk, today=MONDAY)

        self.assertEqual(result["risk_level"], "medium")
        self.assertEqual(
            result["explanation"],
            "Historical velocity suggests delay, No assignee to gauge velocity",
        )

    def test_large_slip_is_high_risk(self):
        task = self.make_task(estimated_hours=16, due_date=date(2026, 10, 16))
        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["risk_level"], "high")

    def test_on_time_task_is_low_risk(self):
        task = self.make_task(estimated_hours=16, due_date=date(2026, 10, 30))
        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["risk_level"], "low")
        self.assertNotIn("Historical velocity suggests delay", result["explanation"])

    def test_weekend_due_date_small_slip_is_medium_risk(self):
        """Due Saturday, predicted Wednesday: only Monday and Tuesday count as slip."""
        task = self.make_task(estimated_hours=16, due_date=date(2026, 10, 24))
        result = predict_task_completion(task.pk, today=date(2026, 10, 26))

        self.assertEqual(result["predicted_date"], date(2026, 10, 28))
        self.assertEqual(result["risk_level"], "medium")

    def test_dependency_due_on_weekend_starts_next_week(self):
        blocker = self.make_task(title="Blocker", due_date=date(2026, 10, 24))
        task = self.make_task(estimated_hours=8)
        TaskDependency.objects.create(task=task, depends_on_task=blocker)

        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["predicted_date"], date(2026, 10, 26))

    def test_no_due_date_is_always_low_risk(self):
        task = self.make_task(estimated_hours=400)
        result = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(result["risk_level"], "low")

    def test_forecast_is_idempotent(self):
        blocker = self.make_task(title="Blocker", due_date=MONDAY + timedelta(days=3))
        task = self.make_task(estimated_hours=12, due_date=MONDAY + timedelta(days=4))
        TaskDependency.objects.create(task=task, depends_on_task=blocker)

        first = predict_task_completion(task.pk, today=MONDAY)
        second = predict_task_completion(task.pk, today=MONDAY)
        self.assertEqual(first, second)

    def test_forecast_does_not_write(self):
        task = self.make_task(estimated_hours=16, status="pending")
        predict_task_completion(task.pk, today=MONDAY)
        task.refresh_from_db()
        self.assertEqual(task.status, "pending")

    def test_unknown_task_returns_none(self):
        self.assertIsNone(predict_task_completion(999999, today=MONDAY))

    def test_predict_many_maps_missing_to_none(self):
        task = self.make_task(estimated_hours=8)
        result = predict_many([task.pk, 999999], today=MONDAY)
        self.assertEqual(result[task.pk]["predicted_date"], date(2026, 10, 20))
        self.assertIsNone(result[999999])

    def test_pessimism_factor_defaults(self):
        self.assertEqual(pessimism_factor([]), 1.2)


class DependencyTests(TestCase):
    def setUp(self):
        self.project = Project.objects.create(name="Launch")
        self.a = Task.objects.create(project=self.project, title="A")
        self.b = Task.objects.create(project=self.project, title="B")
        self.c = Task.objects.create(project=self.project, title="C")

    def test_detects_cycles_in_graph(self):
        cycles = detect_circular_dependencies({1: [2], 2: [3], 3: [1], 4: [4], 5: []})
        self.assertIn([1, 2, 3, 1], cycles)
        self.assertIn([4, 4], cycles)
        self.assertEqual(len(cycles), 2)

    def test_acyclic_graph_has_no_cycles(self):
        self.assertEqual(detect_circular_dependencies({1: [2, 3], 2: [3], 3: []}), [])

    def test_would_create_cycle(self):
        TaskDependency.objects.create(task=self.a, depends_on_task=self.b)
        TaskDependency.objects.create(task=self.b, depends_on_task=self.c)

        self.assertTrue(would_create_cycle(self.c.pk, self.a.pk))
        self.assertTrue(would_create_cycle(self.a.pk, self.a.pk))
        self.assertFalse(would_create_cycle(self.a.pk, self.c.pk))

    def test_add_dependency_blocks_task(self):
        add_dependency(self.a, self.b)
        self.a.refresh_from_db()
        self.assertEqual(self.a.status, "waiting")
        self.assertTrue(is_task_blocked(self.a))

    def test_add_dependency_on_completed_task_does_not_block(self):
        self.b.status = "completed"
        self.b.save()
        add_dependency(self.a, self.b)
        self.a.refresh_from_db()
        self.assertEqual(self.a.status, "pending")

    def test_add_dependency_rejects_cycle(self):
        add_dependency(self.a, self.b)
        add_dependency(self.b, self.c)
        with self.assertRaises(DependencyError):
            add_dependency(self.c, self.a)
        self.assertFalse(TaskDependency.objects.filter(task=self.c).exists())

    def test_add_dependency_rejects_self_duplicate_and_cross_project(self):
        other = Task.objects.create(project=Project.objects.create(name="Other"), title="X")
        add_dependency(self.a, self.b)
        for task, depends_on in [(self.a, self.a), (self.a, self.b), (self.a, other)]:
            with self.assertRaises(DependencyError):
                add_dependency(task, depends_on)

    def test_concurrent_duplicate_is_reported_as_existing(self):
        add_dependency(self.a, self.b)
        with patch("tasks.dependencies._edge_exists", return_value=False):
            with self.assertRaisesMessage(DependencyError, "Dependency already exists."):
                add_dependency(self.a, self.b)
        self.assertEqual(TaskDependency.objects.filter(task=self.a).count(), 1)

    def test_remove_dependency_unblocks_task(self):
        add_dependency(self.a, self.b)
        self.assertTrue(remove_dependency(self.a.pk, self.b.pk))
        self.a.refresh_from_db()
        self.assertEqual(self.a.status, "pending")
        self.assertFalse(remove_dependency(self.a.pk, self.b.pk))

    def test_project_graph_lists_every_task(self):
        TaskDependency.objects.create(task=self.a, depends_on_task=self.b)
        graph = project_dependency_graph(self.project.pk)
        self.assertEqual(graph, {self.a.pk: [self.b.pk], self.b.pk: [], self.c.pk: []})


class ProductivityTests(TestCase):
    def setUp(self):
        self.project = Project.objects.create(name="Ops")
        self.start, self.end = week_period(today=MONDAY)

    def tasks(self):
        return Task.objects.filter(project=self.project)

    def test_week_period(self):
        self.assertEqual(week_period(today=date(2026, 10, 22)), (MONDAY, date(2026, 10, 25)))
        self.assertEqual(week_period("last_week", today=MONDAY), (date(2026, 10, 12), date(2026, 10, 18)))

    def test_empty_project_scores_full_marks(self):
        report = calculate_productivity(self.tasks(), self.start, self.end, today=MONDAY)
        self.assertEqual(report["score"], 100)
        self.assertEqual(set(report["metrics"].values()), {100})

    def test_completion_and_on_time_rates(self):
        Task.objects.create(project=self.project, title="Late", status="completed",
                            due_date=MONDAY, completed_at=at(date(2026, 10, 20)))
        Task.objects.create(project=self.project, title="Open", due_date=date(2026, 10, 22))

        report = calculate_productivity(self.tasks(), self.start, self.end, today=MONDAY)
        self.assertEqual(report["metrics"]["completion_rate"], 50)
        self.assertEqual(report["metrics"]["on_time_rate"], 0)

    def test_focus_rate(self):
        Task.objects.create(project=self.project, title="Hit", status="completed",
                            planned_date=MONDAY, completed_at=at(MONDAY))
        Task.objects.create(project=self.project, title="Miss", planned_date=MONDAY)

        report = calculate_productivity(self.tasks(), self.start, self.end, today=MONDAY)
        self.assertEqual(report["metrics"]["focus_rate"], 50)

    def test_overdue_blockers_reduce_dependency_rate(self):
        blocker = Task.objects.create(project=self.project, title="Blocker", due_date=MONDAY - timedelta(days=3))
        waiting = Task.objects.create(project=self.project, title="Waiting")
        TaskDependency.objects.create(task=waiting, depends_on_task=blocker)

        report = calculate_productivity(self.tasks(), self.start, self.end, today=MONDAY)
        self.assertEqual(report["metrics"]["dependency_rate"], 80)

    def test_urgent_response_rate(self):
        t = Task.objects.create(project=self.project, title="Fire", priority="urgent")
        Task.objects.filter(pk=t.pk).update(created_at=at(MONDAY, 9), started_at=at(MONDAY, 14))

        report = calculate_productivity(self.tasks(), self.start, self.end, today=MONDAY)
        self.assertEqual(report["metrics"]["urgent_rate"], 50)

    def test_urgent_response_points(self):
        self.assertEqual(urgent_response_points(1), 100)
        self.assertEqual(urgent_response_points(4), 80)
        self.assertEqual(urgent_response_points(20), 20)
        self.assertEqual(urgent_response_points(30), 0)


class ApiTests(APITestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="pm", password="x")
        self.client.force_authenticate(self.user)
        self.project = Project.objects.create(name="API")
        self.task = Task.objects.create(project=self.project, title="Write docs", estimated_hours=8)
        self.other = Task.objects.create(project=self.project, title="Review")

    def test_forecast_endpoint(self):
        resp = self.client.get(f"/api/forecast/task/{self.task.pk}/")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["task_id"], self.task.pk)
        self.assertEqual(resp.data["confidence"], 65)
        self.assertEqual(resp.data["risk_level"], "low")
        self.assertIn("predicted_date", resp.data)

    def test_forecast_unknown_task_is_404(self):
        resp = self.client.get("/api/forecast/task/999999/")
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.data, {"error": "Task not found"})

    def test_forecast_requires_authentication(self):
        self.client.force_authenticate(None)
        resp = self.client.get(f"/api/forecast/task/{self.task.pk}/")
        self.assertIn(resp.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_batch_forecast(self):
        resp = self.client.post("/api/forecast/tasks/", {"task_ids": [self.task.pk, 999999]}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["data"][str(self.task.pk)]["task_id"], self.task.pk)
        self.assertIsNone(resp.data["data"]["999999"])

    def test_batch_forecast_validates_input(self):
        resp = self.client.post("/api/forecast/tasks/", {"task_ids": []}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

    def test_create_and_list_dependency(self):
        url = f"/api/tasks/{self.task.pk}/dependencies/"
        resp = self.client.post(url, {"depends_on_task_id": self.other.pk}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["task_status"], "waiting")
        self.assertEqual(TaskDependency.objects.get().created_by, self.user)

        resp = self.client.get(url)
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(len(resp.data), 1)
        self.assertEqual(resp.data[0]["depends_on_task_id"], self.other.pk)
        self.assertEqual(resp.data[0]["depends_on_title"], "Review")

    def test_list_dependents(self):
        TaskDependency.objects.create(task=self.task, depends_on_task=self.other)
        resp = self.client.get(f"/api/tasks/{self.other.pk}/dependents/")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(len(resp.data), 1)
        self.assertEqual(resp.data[0]["task_id"], self.task.pk)
        self.assertEqual(resp.data[0]["task_title"], "Write docs")

        self.assertEqual(self.client.get(f"/api/tasks/{self.task.pk}/dependents/").data, [])
        self.assertEqual(self.client.get("/api/tasks/999999/dependents/").status_code, status.HTTP_404_NOT_FOUND)

    def test_circular_dependency_is_rejected(self):
        TaskDependency.objects.create(task=self.other, depends_on_task=self.task)
        resp = self.client.post(
            f"/api/tasks/{self.task.pk}/dependencies/", {"depends_on_task_id": self.other.pk}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("Circular", resp.data["error"])

    def test_dependency_on_unknown_task_is_404(self):
        resp = self.client.post(
            f"/api/tasks/{self.task.pk}/dependencies/", {"depends_on_task_id": 999999}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

    def test_delete_dependency(self):
        TaskDependency.objects.create(task=self.task, depends_on_task=self.other)
        url = f"/api/tasks/{self.task.pk}/dependencies/{self.other.pk}/"
        self.assertEqual(self.client.delete(url).status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(self.client.delete(url).status_code, status.HTTP_404_NOT_FOUND)

    def test_dependency_cycles_endpoint(self):
        TaskDependency.objects.create(task=self.task, depends_on_task=self.other)
        TaskDependency.objects.create(task=self.other, depends_on_task=self.task)
        resp = self.client.get(f"/api/projects/{self.project.pk}/dependency-cycles/")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["cycles"], [[self.task.pk, self.other.pk, self.task.pk]])

    def test_project_productivity(self):
        resp = self.client.get(f"/api/productivity/project/{self.project.pk}/", {"period": "last_week"})
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertIn("score", resp.data)
        self.assertIn("completion_rate", resp.data["metrics"])

    def test_productivity_rejects_unknown_period(self):
        resp = self.client.get(f"/api/productivity/project/{self.project.pk}/", {"period": "decade"})
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

    def test_user_productivity(self):
        resp = self.client.get(f"/api/productivity/user/{self.user.pk}/")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["score"], 100)
        self.assertEqual(self.client.get("/api/productivity/user/999999/").status_code, status.HTTP_404_NOT_FOUND)
