from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy.exc import NoSuchTableError, OperationalError

from fieldtasks.services.schema_guard import REQUIRED_TABLE_COLUMNS, verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        if isinstance(self._version_value, Exception):
            raise self._version_value
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(self, *, columns_by_table: dict[str, set[str]], enums: list[dict[str, object]] | None):
        self._columns_by_table = columns_by_table
        self._enums = enums

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        if table_name not in self._columns_by_table:
            raise NoSuchTableError(table_name)
        return [{"name": item} for item in self._columns_by_table[table_name]]

    def get_enums(self):  # type: ignore[no-untyped-def]
        if self._enums is None:
            raise NotImplementedError("get_enums")
        return self._enums


def _complete_columns() -> dict[str, set[str]]:
    return {table: set(columns) for table, columns in REQUIRED_TABLE_COLUMNS.items()}


FULL_ENUMS = [
    {
        "name": "task_state",
        "labels": [
            "pendiente",
            "en_proceso",
            "completada_a_tiempo",
            "completada_vencida",
            "cancelada",
            "incumplida",
        ],
    },
    {"name": "audit_status", "labels": ["pendiente", "aprobado", "rechazado"]},
    {
        "name": "routine_frequency",
        "labels": ["diaria", "semanal", "quincenal", "mensual", "fechas_especificas"],
    },
]


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_columns_exist(self) -> None:
        fake_inspector = _FakeInspector(columns_by_table=_complete_columns(), enums=FULL_ENUMS)

        with patch("fieldtasks.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0002_routine_deadline_rules"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])
        self.assertEqual(result.to_dict()["issue_count"], 0)

    def test_verify_runtime_schema_reports_missing_columns_and_tables(self) -> None:
        columns = _complete_columns()
        columns["task_instances"] = {"id", "tenant_id", "estado"}
        del columns["push_subscriptions"]
        fake_inspector = _FakeInspector(
            columns_by_table=columns,
            enums=[{"name": "task_state", "labels": ["pendiente", "cancelada"]}],
        )

        with patch("fieldtasks.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine(""))  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertTrue(any(item.startswith("MISSING_COLUMNS:task_instances:") for item in result.issues))
        self.assertIn("TABLE_UNREADABLE:push_subscriptions:NoSuchTableError", result.issues)
        self.assertTrue(any(item.startswith("MISSING_ENUM_VALUES:task_state:") for item in result.issues))
        self.assertIn("ENUM_NOT_FOUND:audit_status", result.warnings)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_backends_without_native_enums_only_warn(self) -> None:
        fake_inspector = _FakeInspector(columns_by_table=_complete_columns(), enums=None)

        with patch("fieldtasks.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0002_routine_deadline_rules"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertIn("ENUM_INSPECTION_FAILED:NotImplementedError", result.warnings)

    def test_unreachable_version_table_is_an_issue(self) -> None:
        fake_inspector = _FakeInspector(columns_by_table=_complete_columns(), enums=FULL_ENUMS)
        failure = OperationalError("SELECT version_num", {}, Exception("connection refused"))

        with patch("fieldtasks.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine(failure))  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("ALEMBIC_VERSION_CHECK_FAILED:OperationalError", result.issues)


if __name__ == "__main__":
    unittest.main()
