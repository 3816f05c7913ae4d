from __future__ import annotations

import unittest
from collections.abc import Generator
from datetime import date
from unittest.mock import patch

from fastapi.testclient import TestClient

from fieldtasks.db import get_db
from fieldtasks.errors import AuthorizationError, OutOfRangeError, ValidationError
from fieldtasks.main import app
from fieldtasks.models import AuditStatus, TaskState
from fieldtasks.security import AuthenticatedUser, SystemCaller, require_caller, require_user
from fieldtasks.services.missed_tasks import SweepResult
from fieldtasks.services.push_notifications import PushDelivered, PushEndpointRemoved
from fieldtasks.services.task_audit import AuditResult
from fieldtasks.services.task_cancellation import CancellationResult
from fieldtasks.services.task_completion import CompletionResult

EXECUTOR = AuthenticatedUser(user_id="user-executor", tenant_id="tenant-a", role="ejecutor")
AUDITOR = AuthenticatedUser(user_id="user-auditor", tenant_id="tenant-a", role="auditor")
LEADER = AuthenticatedUser(user_id="user-leader", tenant_id="tenant-a", role="lider")
DIRECTOR = AuthenticatedUser(user_id="user-director", tenant_id="tenant-a", role="director")


class _FakeDB:
    def commit(self) -> None:
        return

    def rollback(self) -> None:
        return


def _override_get_db(fake_db: _FakeDB):
    def _override() -> Generator[_FakeDB, None, None]:
        yield fake_db

    return _override


class _EndpointTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.fake_db = _FakeDB()
        app.dependency_overrides[get_db] = _override_get_db(self.fake_db)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _as_user(self, user: AuthenticatedUser) -> None:
        app.dependency_overrides[require_user] = lambda: user
        app.dependency_overrides[require_caller] = lambda: user

    def _as_system(self) -> None:
        app.dependency_overrides[require_caller] = lambda: SystemCaller()


class CompleteTaskEndpointTests(_EndpointTestCase):
    @patch("fieldtasks.routers.tasks.complete_task")
    def test_complete_task_returns_status(self, mock_complete) -> None:
        self._as_user(EXECUTOR)
        mock_complete.return_value = CompletionResult(
            task_id="task-1",
            status=TaskState.COMPLETED_ON_TIME,
            gps_in_range=True,
            distance_m=4.2,
        )

        response = self.client.post(
            "/functions/v1/complete-task",
            json={
                "taskId": "task-1",
                "gpsData": {"lat": 4.6097, "lng": -74.0817, "accuracy": 6},
                "inventory": [{"producto_id": "prod-a", "esperado": 3, "fisico": 2}],
                "comments": "Listo",
            },
            headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True, "status": "completada_a_tiempo"})
        self.assertEqual(response.headers["access-control-allow-origin"], "*")
        self.assertIn("x-request-id", response.headers)

        kwargs = mock_complete.call_args.kwargs
        self.assertIs(kwargs["actor"], EXECUTOR)
        self.assertEqual(kwargs["task_id"], "task-1")
        self.assertEqual(kwargs["gps"].lat, 4.6097)
        self.assertEqual(kwargs["inventory"][0].producto_id, "prod-a")
        self.assertEqual(kwargs["client_ip"], "203.0.113.9")

    @patch("fieldtasks.routers.tasks.complete_task")
    def test_out_of_range_error_includes_distance_and_limit(self, mock_complete) -> None:
        self._as_user(EXECUTOR)
        mock_complete.side_effect = OutOfRangeError(distance_m=150.37, limit_m=100.0)

        response = self.client.post(
            "/functions/v1/complete-task",
            json={"taskId": "task-1", "gpsData": {"lat": 4.611, "lng": -74.0817}},
        )

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "GPS_OUT_OF_RANGE")
        self.assertEqual(body["distance"], 150.37)
        self.assertEqual(body["limit"], 100.0)
        self.assertEqual(body["error"], "Ubicación fuera de rango (150m). Máximo permitido: 100m.")
        self.assertIn("request_id", body)
        self.assertEqual(response.headers["access-control-allow-origin"], "*")

    def test_missing_bearer_token_is_unauthorized(self) -> None:
        response = self.client.post("/functions/v1/complete-task", json={"taskId": "task-1"})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Unauthorized")

    def test_invalid_payload_is_validation_error(self) -> None:
        self._as_user(EXECUTOR)

        response = self.client.post("/functions/v1/complete-task", json={"gpsData": {"lat": 4.6}})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "VALIDATION_ERROR")

    def test_preflight_returns_cors_headers_without_body(self) -> None:
        for path in ("complete-task", "audit-execution", "cancel-task", "mark-missed-tasks", "send-push"):
            with self.subTest(path=path):
                response = self.client.options(f"/functions/v1/{path}")
                self.assertEqual(response.status_code, 200)
                self.assertEqual(response.content, b"")
                self.assertEqual(response.headers["access-control-allow-origin"], "*")
                self.assertIn("authorization", response.headers["access-control-allow-headers"])

    @patch("fieldtasks.routers.tasks.complete_task", side_effect=RuntimeError("boom"))
    def test_unexpected_error_is_internal_error(self, _mock_complete) -> None:
        self._as_user(EXECUTOR)
        client = TestClient(app, raise_server_exceptions=False)

        response = client.post("/functions/v1/complete-task", json={"taskId": "task-1"})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["code"], "INTERNAL_ERROR")


class AuditExecutionEndpointTests(_EndpointTestCase):
    @patch("fieldtasks.routers.tasks.review_task")
    def test_audit_execution_passes_decision(self, mock_review) -> None:
        self._as_user(AUDITOR)
        mock_review.return_value = AuditResult(task_id="task-1", audit_status=AuditStatus.REJECTED)

        response = self.client.post(
            "/functions/v1/audit-execution",
            json={"taskId": "task-1", "status": "rejected", "note": "Faltan fotos"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True})
        kwargs = mock_review.call_args.kwargs
        self.assertEqual(kwargs["decision"], "rejected")
        self.assertEqual(kwargs["note"], "Faltan fotos")

    def test_unknown_decision_is_rejected(self) -> None:
        self._as_user(AUDITOR)

        response = self.client.post(
            "/functions/v1/audit-execution",
            json={"taskId": "task-1", "status": "maybe"},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "VALIDATION_ERROR")

    @patch("fieldtasks.routers.tasks.review_task")
    def test_wrong_role_is_forbidden(self, mock_review) -> None:
        self._as_user(EXECUTOR)
        mock_review.side_effect = AuthorizationError("Forbidden: Insufficient permissions")

        response = self.client.post(
            "/functions/v1/audit-execution",
            json={"taskId": "task-1", "status": "approved"},
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "FORBIDDEN")


class CancelTaskEndpointTests(_EndpointTestCase):
    @patch("fieldtasks.routers.tasks.cancel_task")
    def test_cancel_future_reports_assignment(self, mock_cancel) -> None:
        self._as_user(LEADER)
        mock_cancel.return_value = CancellationResult(
            task_id="task-1",
            message="Tarea cancelada correctamente y se ha desactivado la asignación recurrente.",
            assignment_deactivated=True,
        )

        response = self.client.post(
            "/functions/v1/cancel-task",
            json={"taskId": "task-1", "reason": "PDV cerrado", "scope": "future"},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertTrue(body["assignmentDeactivated"])
        self.assertIsNone(body["warning"])
        self.assertEqual(mock_cancel.call_args.kwargs["scope"], "future")

    @patch("fieldtasks.routers.tasks.cancel_task")
    def test_cancel_completed_task_is_domain_error(self, mock_cancel) -> None:
        self._as_user(LEADER)
        mock_cancel.side_effect = ValidationError(
            "No se puede cancelar una tarea que ya fue completada.",
            code="TASK_ALREADY_COMPLETED",
        )

        response = self.client.post(
            "/functions/v1/cancel-task",
            json={"taskId": "task-1", "reason": "Error"},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "No se puede cancelar una tarea que ya fue completada.")

    def test_unknown_scope_is_rejected(self) -> None:
        self._as_user(LEADER)

        response = self.client.post(
            "/functions/v1/cancel-task",
            json={"taskId": "task-1", "reason": "Error", "scope": "forever"},
        )

        self.assertEqual(response.status_code, 400)


class MarkMissedTasksEndpointTests(_EndpointTestCase):
    @patch("fieldtasks.routers.tasks.log_audit")
    @patch("fieldtasks.routers.tasks.mark_missed_tasks")
    def test_system_caller_sweeps_all_tenants(self, mock_sweep, mock_log_audit) -> None:
        self._as_system()
        mock_sweep.return_value = SweepResult(target_date=date(2024, 3, 10), updated=4)

        response = self.client.post("/functions/v1/mark-missed-tasks", json={"date": "2024-03-10"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "success": True,
                "message": "Se marcaron 4 tareas como incumplidas para la fecha 2024-03-10",
                "updated": 4,
                "date": "2024-03-10",
            },
        )
        kwargs = mock_sweep.call_args.kwargs
        self.assertEqual(kwargs["target_date"], date(2024, 3, 10))
        self.assertIsNone(kwargs["tenant_id"])
        mock_log_audit.assert_not_called()

    @patch("fieldtasks.routers.tasks.log_audit")
    @patch("fieldtasks.routers.tasks.mark_missed_tasks")
    def test_director_sweep_is_scoped_and_audited(self, mock_sweep, mock_log_audit) -> None:
        self._as_user(DIRECTOR)
        mock_sweep.return_value = SweepResult(target_date=date(2024, 3, 10), updated=1, tenant_id="tenant-a")

        response = self.client.post("/functions/v1/mark-missed-tasks")

        self.assertEqual(response.status_code, 200)
        self.assertIsNone(mock_sweep.call_args.kwargs["target_date"])
        self.assertEqual(mock_sweep.call_args.kwargs["tenant_id"], "tenant-a")
        self.assertEqual(mock_log_audit.call_args.kwargs["action"], "mark_missed_tasks")

    @patch("fieldtasks.routers.tasks.mark_missed_tasks")
    def test_leader_cannot_run_sweep(self, mock_sweep) -> None:
        self._as_user(LEADER)

        response = self.client.post("/functions/v1/mark-missed-tasks", json={})

        self.assertEqual(response.status_code, 403)
        mock_sweep.assert_not_called()


class PushEndpointTests(_EndpointTestCase):
    @patch("fieldtasks.routers.tasks.dispatch_push_to_user")
    def test_system_caller_can_push_to_any_user(self, mock_dispatch) -> None:
        self._as_system()
        mock_dispatch.return_value = [
            PushDelivered(subscription_id=1, endpoint="https://push.example.com/a"),
            PushEndpointRemoved(subscription_id=2, endpoint="https://push.example.com/b", status_code=410),
        ]

        response = self.client.post(
            "/functions/v1/send-push",
            json={"userId": "user-executor", "title": "Hola", "body": "Mundo"},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual([item["kind"] for item in body["results"]], ["ok", "deleted"])
        self.assertEqual(mock_dispatch.call_args.kwargs["user_id"], "user-executor")

    @patch("fieldtasks.routers.tasks.dispatch_push_to_user")
    def test_user_cannot_push_to_someone_else(self, mock_dispatch) -> None:
        self._as_user(EXECUTOR)

        response = self.client.post(
            "/functions/v1/send-push",
            json={"userId": "user-auditor", "title": "Hola", "body": "Mundo"},
        )

        self.assertEqual(response.status_code, 403)
        mock_dispatch.assert_not_called()

    @patch("fieldtasks.routers.tasks.dispatch_push_to_user", return_value=[])
    def test_user_can_push_to_self(self, _mock_dispatch) -> None:
        self._as_user(EXECUTOR)

        response = self.client.post(
            "/functions/v1/send-push",
            json={"userId": "user-executor", "title": "Prueba", "body": ""},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True, "results": []})

    def test_blank_title_is_rejected(self) -> None:
        self._as_system()

        response = self.client.post(
            "/functions/v1/send-push",
            json={"userId": "user-executor", "title": "   ", "body": ""},
        )

        self.assertEqual(response.status_code, 400)

    @patch("fieldtasks.routers.tasks.get_push_public_config")
    def test_vapid_public_key(self, mock_config) -> None:
        mock_config.return_value = {"enabled": True, "publicKey": "BPublicKey"}

        response = self.client.get("/functions/v1/get-vapid-public-key")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"enabled": True, "publicKey": "BPublicKey"})


class HealthEndpointTests(_EndpointTestCase):
    def test_health_reports_schema_guard(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertIn("schema_guard", body)

    @patch("fieldtasks.main.get_push_public_config", return_value={"enabled": True, "publicKey": "BPublicKey"})
    def test_health_reports_push_availability(self, _mock_config) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["push"])


if __name__ == "__main__":
    unittest.main()
