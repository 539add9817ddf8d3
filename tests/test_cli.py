import json

from mcpgate.cli import main
from mcpgate.tenant_secrets import SecretCipher


def write_json(path, data):
    path.write_text(json.dumps(data))
    return str(path)


def test_evaluate_allowed(capsys):
    assert main(["evaluate", "--roles", "viewer", "--action", "list_projects"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["decision"] == "allowed"


def test_evaluate_denied_with_policy_file(tmp_path, capsys):
    policy = write_json(tmp_path / "p.json", [
        {"role": "viewer", "action": ["list_projects"], "effect": "allow"},
        {"role": "*", "effect": "deny"},
    ])

    assert main(["evaluate", "-p", policy, "-r", "viewer", "-a", "delete_project"]) == 1
    captured = capsys.readouterr()
    assert json.loads(captured.out)["decision"] == "denied"
    assert "denied" in captured.err


def test_policy_commands(tmp_path, capsys):
    db = str(tmp_path / "cli.db")
    rules = write_json(tmp_path / "rules.json", [{"role": "viewer", "action": "search_companies", "effect": "deny"}])

    assert main(["--db", db, "policy", "upsert", "-t", "acme", "-f", rules, "-v", "2", "--actor", "ops"]) == 0
    version = json.loads(capsys.readouterr().out)
    assert version["created_by"] == "ops"

    assert main(["--db", db, "policy", "show", "-t", "acme"]) == 0
    effective = json.loads(capsys.readouterr().out)
    assert effective[-1]["effect"] == "deny"

    assert main(["--db", db, "policy", "list", "-t", "acme"]) == 0
    assert [v["id"] for v in json.loads(capsys.readouterr().out)] == [version["id"]]

    assert main(["--db", db, "policy", "activate", "-t", "acme", "--id", version["id"]]) == 0
    assert main(["--db", db, "policy", "activate", "-t", "acme", "--id", "missing"]) == 1


def test_logs_empty(tmp_path, capsys):
    assert main(["--db", str(tmp_path / "cli.db"), "logs", "-t", "acme"]) == 0
    assert json.loads(capsys.readouterr().out) == []


def test_keygen(tmp_path):
    out = tmp_path / "secrets" / "key.json"
    assert main(["keygen", "-o", str(out), "-k", "test-key"]) == 0

    data = json.loads(out.read_text())
    assert data["kid"] == "test-key"
    cipher = SecretCipher.from_key_file(str(out))
    assert cipher.decrypt(cipher.encrypt("ok")) == "ok"


def test_manifest(capsys):
    assert main(["manifest"]) == 0
    names = [a["name"] for a in json.loads(capsys.readouterr().out)]
    assert "create_project" in names
    assert "trigger_workflow" not in names


def test_no_command_prints_help(capsys):
    assert main([]) == 2
    assert "usage" in capsys.readouterr().out
