import pytest

from mcpgate.evaluator import can_execute_action
from mcpgate.policy import DEFAULT_POLICY, allow, deny
from mcpgate.tenant_policy import InMemoryTenantPolicyStore, SqliteTenantPolicyStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, db):
    if request.param == "memory":
        return InMemoryTenantPolicyStore(DEFAULT_POLICY)
    return SqliteTenantPolicyStore(db, DEFAULT_POLICY)


def active_versions(store, tenant_id):
    return [v for v in store.list_policies(tenant_id) if v.is_active]


def test_no_override_returns_default(store):
    assert store.get_active_policy("acme") == list(DEFAULT_POLICY)
    assert store.get_active_version("acme") is None


def test_upsert_appends_tenant_rules(store):
    tenant_rules = [deny("viewer", actions="search_companies")]
    version = store.upsert_policy("acme", tenant_rules, "1", "admin-1")

    assert version.is_active
    assert version.created_by == "admin-1"
    assert store.get_active_policy("acme") == list(DEFAULT_POLICY) + tenant_rules
    assert store.get_active_policy("globex") == list(DEFAULT_POLICY)


def test_single_active_version_after_repeated_upserts(store):
    store.upsert_policy("acme", [allow("viewer")], "1", None)
    store.upsert_policy("acme", [deny("viewer")], "2", None)
    latest = store.upsert_policy("acme", [allow("analyst")], "3", None)

    versions = store.list_policies("acme")
    assert len(versions) == 3
    assert [v.id for v in active_versions(store, "acme")] == [latest.id]
    assert store.get_active_policy("acme")[-1] == allow("analyst")


def test_list_is_newest_first(store):
    first = store.upsert_policy("acme", [allow("viewer")], "1", None)
    second = store.upsert_policy("acme", [allow("analyst")], "2", None)
    assert [v.id for v in store.list_policies("acme")] == [second.id, first.id]


def test_activate_previous_version(store):
    first = store.upsert_policy("acme", [allow("viewer")], "1", None)
    store.upsert_policy("acme", [deny("viewer")], "2", None)

    store.activate_policy(first.id, "acme")

    assert [v.id for v in active_versions(store, "acme")] == [first.id]
    assert store.get_active_policy("acme")[-1] == allow("viewer")


def test_deactivate_falls_back_to_default(store):
    version = store.upsert_policy("acme", [deny("viewer")], "1", None)
    store.deactivate_policy(version.id, "acme")

    assert active_versions(store, "acme") == []
    assert store.get_active_policy("acme") == list(DEFAULT_POLICY)


def test_activate_unknown_version_keeps_current_override(store):
    current = store.upsert_policy("acme", [deny("viewer", actions="list_projects")], "1", None)

    with pytest.raises(KeyError):
        store.activate_policy("typo-id", "acme")

    assert [v.id for v in active_versions(store, "acme")] == [current.id]
    decision = can_execute_action(["viewer"], "list_projects", store.get_active_policy("acme"))
    assert not decision.allowed


def test_versions_are_tenant_scoped(store):
    version = store.upsert_policy("acme", [allow("viewer")], "1", None)
    with pytest.raises(KeyError):
        store.deactivate_policy(version.id, "globex")
    assert store.list_policies("globex") == []


def test_read_error_falls_back_to_default():
    class BrokenStore(InMemoryTenantPolicyStore):
        def _fetch_active(self, tenant_id):
            raise RuntimeError("database unreachable")

    store = BrokenStore(DEFAULT_POLICY)
    assert store.get_active_policy("acme") == list(DEFAULT_POLICY)


def test_list_errors_propagate():
    class BrokenStore(InMemoryTenantPolicyStore):
        def _fetch_all(self, tenant_id):
            raise RuntimeError("database unreachable")

    with pytest.raises(RuntimeError):
        BrokenStore(DEFAULT_POLICY).list_policies("acme")


def test_sqlite_rules_survive_reload(db):
    rules = [allow("supplier", actions="evaluate_supplier", owner_only=True)]
    SqliteTenantPolicyStore(db, DEFAULT_POLICY).upsert_policy("acme", rules, "1", "admin")

    reloaded = SqliteTenantPolicyStore(db, DEFAULT_POLICY)
    assert reloaded.get_active_policy("acme")[-1] == rules[0]
    assert reloaded.get_active_version("acme").to_dict()["policy_json"] == [rules[0].to_dict()]
