import pytest

from mcpgate.actions import InMemoryPlatformServices
from mcpgate.context import ExecutionContext
from mcpgate.errors import InvalidCursorError, InvalidResourceTypeError, OwnershipRequiredError, PolicyDeniedError
from mcpgate.policy import DEFAULT_POLICY, allow, deny
from mcpgate.resources import MAX_LIMIT, ResourceService, decode_cursor
from mcpgate.tenant_policy import InMemoryTenantPolicyStore


@pytest.fixture
def policy_store():
    return InMemoryTenantPolicyStore(DEFAULT_POLICY)


@pytest.fixture
def resources(services, policy_store):
    return ResourceService(services, policy_store)


def viewer(tenant_id="acme"):
    return ExecutionContext.new(tenant_id, ["viewer"], user_id="u-1")


def test_projects_are_tenant_scoped(resources):
    page = resources.list(viewer(), "project")
    assert [p["id"] for p in page.items] == ["p-1", "p-2"]
    assert page.has_more is False
    assert page.cursor is None

    assert [p["id"] for p in resources.list(viewer("globex"), "project").items] == ["p-3"]


def test_pagination_with_cursor(resources):
    first = resources.list(viewer(), "company", limit=2)
    assert [c["id"] for c in first.items] == ["c-1", "c-2"]
    assert first.has_more is True
    assert decode_cursor(first.cursor) == {"id": "c-2", "created_at": "2026-01-01T00:00:02Z"}

    second = resources.list(viewer(), "company", limit=2, cursor=first.cursor)
    assert [c["id"] for c in second.items] == ["c-3"]
    assert second.has_more is False
    assert second.to_dict() == {"items": second.items, "cursor": None, "hasMore": False}


def test_cursor_pages_records_sharing_a_timestamp():
    rows = [{"id": f"x-{i}", "name": f"Co {i}", "created_at": "2026-01-01T00:00:00Z"} for i in range(5)]
    service = ResourceService(InMemoryPlatformServices(seed={"companies": rows}),
                              InMemoryTenantPolicyStore(DEFAULT_POLICY))
    seen = []
    cursor = None
    while True:
        page = service.list(viewer(), "company", limit=2, cursor=cursor)
        seen.extend(r["id"] for r in page.items)
        if not page.has_more:
            break
        cursor = page.cursor
    assert seen == [f"x-{i}" for i in range(5)]


def test_limit_is_capped():
    rows = [{"id": f"x-{i:03d}", "name": "Co", "created_at": f"2026-01-01T00:{i // 60:02d}:{i % 60:02d}Z"}
            for i in range(MAX_LIMIT + 10)]
    service = ResourceService(InMemoryPlatformServices(seed={"companies": rows}),
                              InMemoryTenantPolicyStore(DEFAULT_POLICY))

    page = service.list(viewer(), "company", limit=1000)

    assert len(page.items) == MAX_LIMIT
    assert page.has_more is True


@pytest.mark.parametrize("cursor", ["%%%", "bm90LWpzb24=",
                                    "WyJub3QiLCJhbiBvYmplY3QiXQ=="])
def test_invalid_cursor(resources, cursor):
    with pytest.raises(InvalidCursorError):
        resources.list(viewer(), "company", cursor=cursor)


def test_invalid_resource_type(resources):
    with pytest.raises(InvalidResourceTypeError) as exc:
        resources.list(viewer(), "invoices")
    assert exc.value.code == "VALIDATION_ERROR"
    assert "Valid types: company, supplier" in exc.value.message


def test_search(resources):
    assert [c["id"] for c in resources.list(viewer(), "company", q="BALTIC").items] == ["c-3"]
    assert [c["id"] for c in resources.list(viewer(), "company", q="556002").items] == ["c-2"]
    assert [p["id"] for p in resources.list(viewer(), "project", q="yearly").items] == ["p-2"]


def test_suppliers_are_approved_companies(resources):
    page = resources.list(viewer(), "supplier")
    assert [s["id"] for s in page.items] == ["c-2", "c-3"]


def test_supplier_role_sees_only_owned_records(resources, policy_store):
    supplier = ExecutionContext.new("acme", ["supplier"], user_id="supplier-user")
    with pytest.raises(PolicyDeniedError):
        resources.list(supplier, "supplier")

    policy_store.upsert_policy("acme", [allow("supplier", resources="supplier", actions="list", owner_only=True)],
                               "1", "admin")
    assert [s["id"] for s in resources.list(supplier, "supplier").items] == ["c-2"]
    assert resources.get(supplier, "supplier", "c-2")["name"] == "Nordic Parts"
    with pytest.raises(OwnershipRequiredError):
        resources.get(supplier, "supplier", "c-3")


def test_supplier_role_cannot_list_projects(resources):
    supplier = ExecutionContext.new("acme", ["supplier"], user_id="supplier-user")
    with pytest.raises(PolicyDeniedError):
        resources.list(supplier, "project")


def test_tenant_policy_can_revoke_read_access(resources, policy_store):
    policy_store.upsert_policy("acme", [deny("viewer", resources="task")], "1", "admin")

    with pytest.raises(PolicyDeniedError):
        resources.list(viewer(), "task")
    resources.list(viewer("globex"), "task")


def test_get_returns_none_outside_scope(resources):
    assert resources.get(viewer(), "project", "p-1")["title"] == "ERP rollout"
    assert resources.get(viewer(), "project", "p-3") is None
    assert resources.get(viewer(), "project", "missing") is None
    assert resources.get(viewer(), "supplier", "c-1") is None
