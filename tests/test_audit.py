import pytest

from mcpgate.audit import (
    ActionAuditService,
    ActionLogEntry,
    ActionStatus,
    AuditLog,
    InMemoryAuditLog,
    SqliteAuditLog,
)
from mcpgate.log_backends import AuditArchive, S3ObjectLockArchive


def entry(status=ActionStatus.SUCCESS, key="k-1", tenant_id="acme", result=None, **kwargs):
    return ActionLogEntry(
        tenant_id=tenant_id,
        action_name="create_project",
        status=status,
        duration_ms=3,
        request_id="req-1",
        idempotency_key=key,
        input={"name": "Rollout"},
        result=result,
        **kwargs
    )


@pytest.fixture(params=["memory", "sqlite"])
def backend(request, db):
    if request.param == "memory":
        return InMemoryAuditLog()
    return SqliteAuditLog(db)


class FailingLog(AuditLog):
    def append(self, entry):
        raise RuntimeError("log store unreachable")

    def find_success(self, tenant_id, idempotency_key):
        raise RuntimeError("log store unreachable")

    def list_for_tenant(self, tenant_id, limit):
        raise RuntimeError("log store unreachable")


class RecordingArchive(AuditArchive):
    def __init__(self):
        self.written = []

    def write_entry(self, entry_id, tenant_id, created_at, entry_json):
        self.written.append((entry_id, tenant_id, created_at, entry_json))


def test_find_returns_success_entries_only(backend):
    service = ActionAuditService(backend)
    service.log_action(entry(ActionStatus.ERROR, error_code="ACTION_FAILED", error_message="boom"))

    assert service.find_by_idempotency_key("acme", "k-1") is None

    success = entry(result={"projectId": "p-9"})
    service.log_action(success)

    found = service.find_by_idempotency_key("acme", "k-1")
    assert found.id == success.id
    assert found.result == {"projectId": "p-9"}


def test_find_is_tenant_scoped(backend):
    service = ActionAuditService(backend)
    service.log_action(entry(result={"ok": 1}, tenant_id="acme"))
    assert service.find_by_idempotency_key("globex", "k-1") is None


def test_logs_newest_first_with_limit(backend):
    service = ActionAuditService(backend)
    for i in range(5):
        service.log_action(entry(key=f"k-{i}"))

    logs = service.get_logs_for_tenant("acme", limit=3)

    assert [e.idempotency_key for e in logs] == ["k-4", "k-3", "k-2"]


def test_sqlite_round_trips_fields(db):
    service = ActionAuditService(SqliteAuditLog(db))
    original = entry(ActionStatus.ERROR, error_code="POLICY_DENIED", error_message="denied",
                     user_id="u-1", policy_result={"decision": "denied"})
    service.log_action(original)

    (stored,) = service.get_logs_for_tenant("acme")
    assert stored == original


def test_write_failures_are_swallowed(caplog):
    service = ActionAuditService(FailingLog())
    with caplog.at_level("ERROR", logger="mcpgate.audit"):
        assert service.log_action(entry()) is False
    assert any("mcp.audit.failed" in r.getMessage() for r in caplog.records)


def test_read_failures_degrade():
    service = ActionAuditService(FailingLog())
    assert service.find_by_idempotency_key("acme", "k-1") is None
    assert service.get_logs_for_tenant("acme") == []


def test_archive_receives_finalized_entries():
    archive = RecordingArchive()
    service = ActionAuditService(InMemoryAuditLog(), archive)
    e = entry()
    service.log_action(e)
    assert archive.written[0][:3] == (e.id, "acme", e.created_at)


def test_archive_failure_does_not_fail_write():
    class BrokenArchive(AuditArchive):
        def write_entry(self, *args):
            raise RuntimeError("s3 down")

    backend = InMemoryAuditLog()
    assert ActionAuditService(backend, BrokenArchive()).log_action(entry()) is True
    assert len(backend.all()) == 1


def test_in_memory_log_is_bounded():
    backend = InMemoryAuditLog(max_records=2)
    for i in range(4):
        backend.append(entry(key=f"k-{i}"))
    assert [e.idempotency_key for e in backend.all()] == ["k-2", "k-3"]


def test_s3_archive_writes_locked_object():
    class FakeS3:
        def __init__(self):
            self.calls = []

        def put_object(self, **kwargs):
            self.calls.append(kwargs)

    s3 = FakeS3()
    archive = S3ObjectLockArchive("audit-bucket", "mcpgate/log", 30, client=s3)
    archive.write_entry("e-1", "acme", "2026-01-01T00:00:00Z", '{"id": "e-1"}')

    (call,) = s3.calls
    assert call["Bucket"] == "audit-bucket"
    assert call["Key"] == "mcpgate/log/acme/2026-01-01T00:00:00Z-e-1.json"
    assert call["ObjectLockMode"] == "COMPLIANCE"


def test_reset_clears_logs_but_keeps_schema(db):
    service = ActionAuditService(SqliteAuditLog(db))
    service.log_action(entry())
    assert db.stats()["mcp_action_log_count"] == 1

    db.reset()

    assert db.stats()["mcp_action_log_count"] == 0
    assert service.log_action(entry()) is True
