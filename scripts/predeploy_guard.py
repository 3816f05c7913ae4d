#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from fieldtasks.services.schema_guard import verify_runtime_schema
from fieldtasks.settings import Settings, get_missed_sweep_local_time, get_settings

# alembic_version.version_num is VARCHAR(32)
MAX_REVISION_ID_LENGTH = 32


@dataclass(slots=True)
class CheckResult:
    name: str
    status: str
    details: dict[str, Any]


def _script_directory() -> ScriptDirectory:
    config = Config(str(ROOT_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT_DIR / "fieldtasks" / "migrations"))
    return ScriptDirectory.from_config(config)


def check_migration_chain(script: ScriptDirectory) -> CheckResult:
    revisions = [item.revision for item in script.walk_revisions()]
    heads = sorted(script.get_heads())
    too_long = [revision for revision in revisions if len(revision) > MAX_REVISION_ID_LENGTH]
    ok = not too_long and len(heads) == 1
    return CheckResult(
        name="migration_chain",
        status="ok" if ok else "fail",
        details={"revisions": len(revisions), "heads": heads, "too_long": too_long},
    )


def check_secrets(settings: Settings) -> CheckResult:
    present = {
        "jwt_secret": bool(settings.jwt_secret.strip()),
        "service_role_key": bool(settings.service_role_key.strip()),
        "push_vapid_public_key": bool((settings.push_vapid_public_key or "").strip()),
        "push_vapid_private_key": bool((settings.push_vapid_private_key or "").strip()),
    }
    # Push may be off entirely, but half a VAPID pair is a misconfiguration.
    push_pair_ok = present["push_vapid_public_key"] == present["push_vapid_private_key"]
    ok = present["jwt_secret"] and present["service_role_key"] and push_pair_ok
    return CheckResult(
        name="secrets",
        status="ok" if ok else "fail",
        details={**present, "push_pair_ok": push_pair_ok},
    )


def check_missed_sweep(settings: Settings) -> CheckResult:
    interval_ok = settings.missed_sweep_interval_seconds >= 30
    return CheckResult(
        name="missed_sweep",
        status="ok" if interval_ok else "warn",
        details={
            "enabled": settings.missed_sweep_worker_enabled,
            "cutoff_local": get_missed_sweep_local_time().isoformat(),
            "interval_seconds": settings.missed_sweep_interval_seconds,
            "civil_utc_offset_hours": settings.civil_utc_offset_hours,
        },
    )


def check_database(settings: Settings, expected_heads: list[str]) -> CheckResult:
    engine = create_engine(settings.database_url, pool_pre_ping=True)
    try:
        with engine.connect() as connection:
            applied = sorted(
                str(value).strip()
                for value in connection.execute(text("SELECT version_num FROM alembic_version")).scalars()
                if value is not None
            )
        schema_result = verify_runtime_schema(engine)
    except SQLAlchemyError as exc:
        return CheckResult(
            name="database",
            status="warn",
            details={"reason": "DATABASE_CHECK_FAILED", "error": type(exc).__name__},
        )
    finally:
        engine.dispose()

    missing_heads = [head for head in expected_heads if head not in applied]
    return CheckResult(
        name="database",
        status="ok" if not missing_heads and schema_result.ok else "fail",
        details={
            "applied": applied,
            "missing_heads": missing_heads,
            "schema_guard": schema_result.to_dict(),
        },
    )


def main() -> int:
    settings = get_settings()
    script = _script_directory()
    checks = [
        check_migration_chain(script),
        check_secrets(settings),
        check_missed_sweep(settings),
        check_database(settings, sorted(script.get_heads())),
    ]
    failed = [check.name for check in checks if check.status == "fail"]
    print(
        json.dumps(
            {
                "generated_at_utc": datetime.now(timezone.utc).isoformat(),
                "ok": not failed,
                "failed": failed,
                "checks": [{"name": c.name, "status": c.status, "details": c.details} for c in checks],
            },
            ensure_ascii=False,
            indent=2,
        )
    )
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
