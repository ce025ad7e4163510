"""
Operator endpoint tests.
"""

from datetime import date, datetime, timedelta, timezone
from sqlalchemy import select

from backend.app.models.audit_log import AuditLog
from backend.app.services.audit import AuditAction


async def test_process_now_requires_admin(client, user_headers):
    response = await client.post("/v1/admin/ops/recurring/process-now", headers=user_headers)

    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_FORBIDDEN"


async def test_process_now_covers_all_users(client, admin_headers, make_parent, session_factory):
    await make_parent(date(2025, 3, 1))
    await make_parent(date(2025, 2, 1), owner_id=2)

    response = await client.post("/v1/admin/ops/recurring/process-now", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {"processed": 2, "created": 3, "failed": []}

    async with session_factory() as session:
        audit = (await session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.RECURRING_PROCESSED)
        )).scalars().all()
    assert len(audit) == 1
    assert audit[0].actor_id == 99
    assert audit[0].meta_data["trigger"] == "operator"


async def test_process_now_reports_failures(client, admin_headers, make_parent):
    broken = await make_parent(date(2025, 3, 1), interval=0)

    response = await client.post("/v1/admin/ops/recurring/process-now", headers=admin_headers)

    body = response.json()
    assert body["processed"] == 1
    assert body["failed"] == [{"parent_id": broken.id, "error": "Interval must be at least 1"}]


async def test_purge_deleted(client, admin_headers, make_parent, db_session):
    old = await make_parent(date(2025, 3, 1))
    old.is_deleted = True
    old.deleted_at = datetime(2025, 3, 15, tzinfo=timezone.utc) - timedelta(days=120)
    await db_session.commit()

    response = await client.post("/v1/admin/ops/purge-deleted", params={"days_to_keep": 90}, headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["rows_purged"] == 1


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["redis"] == "up"
