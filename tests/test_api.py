import pytest


def headers(roles="viewer", tenant="acme", user="u-1", **extra):
    h = {"X-Tenant-Id": tenant, "X-User-Roles": roles, "X-User-Id": user}
    h.update(extra)
    return h


ADMIN = headers("tenant_admin", user="admin-1")


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["actions"] == 6
    assert body["db"]["mcp_action_log_count"] == 0


def test_manifest_lists_actions(client):
    names = [a["name"] for a in client.get("/manifest").json()["actions"]]
    assert names == sorted([
        "assign_task", "create_project", "evaluate_supplier",
        "list_projects", "search_companies", "trigger_workflow",
    ])


# ============================================================
# Identity
# ============================================================

def test_missing_tenant_is_forbidden(client):
    r = client.post("/actions/list_projects", json={}, headers={"X-User-Roles": "viewer"})
    assert r.status_code == 403
    assert r.json() == {"ok": False, "error": {"code": "FORBIDDEN_TENANT", "message": "Tenant context is required"}}


def test_malformed_role_header_rejected(client):
    r = client.post("/actions/list_projects", json={}, headers=headers("viewer, Drop Table"))
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


# ============================================================
# Actions
# ============================================================

def test_run_action(client):
    r = client.post("/actions/list_projects", json={"limit": 1}, headers=headers(**{"X-Request-Id": "req-42"}))

    assert r.status_code == 200
    assert r.headers["X-Request-Id"] == "req-42"
    body = r.json()
    assert body["ok"] is True
    assert body["data"]["count"] == 1
    assert body["data"]["projects"][0]["id"] == "p-2"


def test_unknown_action(client):
    r = client.post("/actions/nonexistent", json={}, headers=headers())
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "ACTION_NOT_FOUND"


def test_denied_action(client):
    r = client.post("/actions/create_project", json={"name": "X"}, headers=headers())
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "POLICY_DENIED"


def test_invalid_action_input(client):
    r = client.post("/actions/assign_task", json={"title": ""}, headers=headers("contributor"))
    assert r.status_code == 400
    message = r.json()["error"]["message"]
    assert "title" in message
    assert "entity_type" in message


def test_failed_action(client):
    r = client.post("/actions/evaluate_supplier", json={"supplierId": "c-3"},
                    headers=headers("supplier", user="supplier-user"))
    assert r.status_code == 500
    assert r.json()["error"]["code"] == "ACTION_FAILED"


def test_workflow_failure_reported_as_action_failed(client):
    r = client.post("/actions/trigger_workflow", json={"workflow_key": "missing"}, headers=ADMIN)
    assert r.status_code == 500
    error = r.json()["error"]
    assert error["code"] == "ACTION_FAILED"
    assert "not configured" in error["message"]


def test_idempotency_key_replays(client, gateway):
    h = headers("project_owner", **{"Idempotency-Key": "create-1"})
    first = client.post("/actions/create_project", json={"name": "Once"}, headers=h)
    second = client.post("/actions/create_project", json={"name": "Once"}, headers=h)

    assert first.json() == second.json()
    assert len([p for p in gateway.services.select("projects") if p["title"] == "Once"]) == 1
    assert len(gateway.audit.get_logs_for_tenant("acme")) == 1


def test_invalid_idempotency_key(client):
    r = client.post("/actions/list_projects", json={}, headers=headers(**{"Idempotency-Key": "has space"}))
    assert r.status_code == 400


# ============================================================
# Resources
# ============================================================

def test_list_resources_paginates(client):
    first = client.get("/resources/company", params={"limit": 2}, headers=headers())
    assert first.status_code == 200
    page = first.json()["data"]
    assert [c["id"] for c in page["items"]] == ["c-1", "c-2"]
    assert page["hasMore"] is True

    rest = client.get("/resources/company", params={"limit": 2, "cursor": page["cursor"]}, headers=headers())
    assert [c["id"] for c in rest.json()["data"]["items"]] == ["c-3"]


def test_invalid_cursor(client):
    r = client.get("/resources/company", params={"cursor": "%%%"}, headers=headers())
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_CURSOR"


def test_invalid_resource_type(client):
    r = client.get("/resources/invoices", headers=headers())
    assert r.status_code == 400


def test_get_resource(client):
    assert client.get("/resources/project/p-1", headers=headers()).json()["data"]["title"] == "ERP rollout"

    missing = client.get("/resources/project/p-3", headers=headers())
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"


def test_get_resource_requires_ownership(client):
    r = client.get("/resources/supplier/c-3", headers=headers("supplier", user="supplier-user"))
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "OWNERSHIP_REQUIRED"


# ============================================================
# Authorization and policies
# ============================================================

def test_authorize_endpoint(client):
    r = client.post("/authorize", json={"action": "evaluate_supplier"}, headers=headers("supplier"))
    data = r.json()["data"]
    assert data["decision"] == "allowed"
    assert data["unresolved_conditions"] == ["owner_only"]

    denied = client.post("/authorize", json={"action": "create_project"}, headers=headers())
    assert denied.status_code == 200
    assert denied.json()["data"]["decision"] == "denied"


@pytest.mark.parametrize("path", ["/logs", "/policies"])
def test_admin_endpoints_denied_to_viewers(client, path):
    r = client.get(path, headers=headers())
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "POLICY_DENIED"


def test_logs_for_admin(client):
    client.post("/actions/list_projects", json={}, headers=headers())
    client.post("/actions/nonexistent", json={}, headers=headers())

    entries = client.get("/logs", headers=ADMIN).json()["data"]

    assert [e["action_name"] for e in entries] == ["nonexistent", "list_projects"]
    assert entries[0]["status"] == "error"
    assert entries[1]["status"] == "success"


def test_policy_lifecycle(client):
    rules = [{"role": "viewer", "action": "search_companies", "effect": "deny"}]
    created = client.post("/policies", json={"version": "2", "rules": rules}, headers=ADMIN)
    assert created.status_code == 200
    version = created.json()["data"]
    assert version["is_active"] is True
    assert version["created_by"] == "admin-1"

    effective = client.get("/policies/effective", headers=headers()).json()["data"]
    assert effective[-1] == {"role": ["viewer"], "action": ["search_companies"], "effect": "deny"}

    r = client.post("/actions/search_companies", json={"query": "acme"}, headers=headers())
    assert r.status_code == 403

    client.post(f"/policies/{version['id']}/deactivate", headers=ADMIN)
    r = client.post("/actions/search_companies", json={"query": "acme"}, headers=headers())
    assert r.status_code == 200

    client.post(f"/policies/{version['id']}/activate", headers=ADMIN)
    listed = client.get("/policies", headers=ADMIN).json()["data"]
    assert [v["is_active"] for v in listed] == [True]


def test_policy_upsert_rejects_invalid_rules(client):
    r = client.post("/policies", json={"version": "3", "rules": [{"role": "viewer", "effect": "maybe"}]},
                    headers=ADMIN)
    assert r.status_code == 400

    r = client.post("/policies", json={"rules": []}, headers=ADMIN)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


def test_activate_unknown_policy_keeps_override(client):
    rules = [{"role": "viewer", "action": "list_projects", "effect": "deny"}]
    version = client.post("/policies", json={"version": "2", "rules": rules}, headers=ADMIN).json()["data"]

    r = client.post("/policies/typo-id/activate", headers=ADMIN)
    assert r.status_code == 404

    listed = client.get("/policies", headers=ADMIN).json()["data"]
    assert [(v["id"], v["is_active"]) for v in listed] == [(version["id"], True)]
    r = client.post("/actions/list_projects", json={}, headers=headers())
    assert r.status_code == 403
