#!/usr/bin/env python3
"""
mcpgate Command Line Interface

Usage:
    mcpgate evaluate --roles <a,b> [--action <name>] [--resource <type>] [--policy <file>]
    mcpgate policy show --tenant <id>
    mcpgate policy list --tenant <id>
    mcpgate policy upsert --tenant <id> --file <file> --version <v>
    mcpgate policy activate --tenant <id> --id <policy id>
    mcpgate logs --tenant <id> [--limit <n>]
    mcpgate keygen --output <file>
    mcpgate manifest
"""

import argparse
import json
import sys
from typing import List, Optional

from .audit import ActionAuditService, SqliteAuditLog
from .db import Database
from .evaluator import PolicyEvaluationContext, evaluate
from .policy import dump_policy_set, load_default_policy, parse_policy_set
from .security import parse_roles
from .tenant_policy import SqliteTenantPolicyStore


def load_json(path: str):
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def open_db(args) -> Database:
    db = Database(args.db)
    db.init_schema()
    return db


def cmd_evaluate(args) -> int:
    """Evaluate a policy decision for a set of roles."""
    if args.policy:
        policy_set = parse_policy_set(load_json(args.policy))
    else:
        policy_set = load_default_policy()

    decision = evaluate(
        parse_roles(args.roles),
        PolicyEvaluationContext(resource_type=args.resource, action_name=args.action),
        policy_set,
    )
    print_json(decision.to_dict())

    if decision.allowed:
        print("\n✓ allowed", file=sys.stderr)
        return 0
    print(f"\n✗ denied: {decision.reason}", file=sys.stderr)
    return 1


def cmd_policy(args) -> int:
    """Inspect or change a tenant's policy versions."""
    store = SqliteTenantPolicyStore(open_db(args))

    if args.policy_command == "show":
        print_json(dump_policy_set(store.get_active_policy(args.tenant)))
    elif args.policy_command == "list":
        print_json([v.to_dict() for v in store.list_policies(args.tenant)])
    elif args.policy_command == "upsert":
        rules = parse_policy_set(load_json(args.file))
        version = store.upsert_policy(args.tenant, rules, args.version, args.actor)
        print_json(version.to_dict())
    elif args.policy_command == "activate":
        try:
            store.activate_policy(args.id, args.tenant)
        except KeyError:
            print(f"Policy {args.id} not found for tenant {args.tenant}", file=sys.stderr)
            return 1
        print(f"Activated policy {args.id}", file=sys.stderr)
    return 0


def cmd_logs(args) -> int:
    """Print recent action log entries for a tenant."""
    audit = ActionAuditService(SqliteAuditLog(open_db(args)))
    print_json([e.to_dict() for e in audit.get_logs_for_tenant(args.tenant, args.limit)])
    return 0


def cmd_keygen(args) -> int:
    """Generate the tenant secret encryption key."""
    from .tenant_secrets import write_key_file

    data = write_key_file(args.output, kid=args.key_id)
    print(f"Key saved to: {args.output}", file=sys.stderr)
    print(f"Key id: {data['kid']}", file=sys.stderr)
    return 0


def cmd_manifest(args) -> int:
    """Print the registered actions and their input schemas."""
    from .gateway import build_gateway

    print_json(build_gateway(in_memory=True).registry.manifest())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcpgate",
        description="mcpgate action gateway CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mcpgate evaluate --roles viewer --action list_projects
  mcpgate policy upsert --tenant acme --file rules.json --version 2
  mcpgate logs --tenant acme --limit 10
  mcpgate keygen -o secrets/mcpgate_secret_key.json
        """
    )
    parser.add_argument("--db", help="SQLite database path (default: MCPGATE_DB_PATH)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # evaluate
    eval_parser = subparsers.add_parser("evaluate", help="Evaluate a policy decision")
    eval_parser.add_argument("-p", "--policy", help="Policy set JSON file (default: platform policy)")
    eval_parser.add_argument("-r", "--roles", required=True, help="Comma separated roles")
    eval_parser.add_argument("-a", "--action", help="Action name")
    eval_parser.add_argument("-R", "--resource", help="Resource type")

    # policy
    policy_parser = subparsers.add_parser("policy", help="Manage tenant policies")
    policy_sub = policy_parser.add_subparsers(dest="policy_command", required=True)
    show_parser = policy_sub.add_parser("show", help="Show the effective policy")
    show_parser.add_argument("-t", "--tenant", required=True)
    list_parser = policy_sub.add_parser("list", help="List policy versions")
    list_parser.add_argument("-t", "--tenant", required=True)
    upsert_parser = policy_sub.add_parser("upsert", help="Store a new active version")
    upsert_parser.add_argument("-t", "--tenant", required=True)
    upsert_parser.add_argument("-f", "--file", required=True, help="Rules JSON file")
    upsert_parser.add_argument("-v", "--version", required=True)
    upsert_parser.add_argument("--actor", help="Recorded as created_by")
    activate_parser = policy_sub.add_parser("activate", help="Activate a version")
    activate_parser.add_argument("-t", "--tenant", required=True)
    activate_parser.add_argument("--id", required=True, help="Policy version id")

    # logs
    logs_parser = subparsers.add_parser("logs", help="Show action log entries")
    logs_parser.add_argument("-t", "--tenant", required=True)
    logs_parser.add_argument("-n", "--limit", type=int, default=25)

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate secret encryption key")
    keygen_parser.add_argument("-o", "--output", required=True, help="Output key file")
    keygen_parser.add_argument("-k", "--key-id", default="mcpgate-secret-01", help="Key identifier")

    # manifest
    subparsers.add_parser("manifest", help="Print the action manifest")

    return parser


COMMANDS = {
    "evaluate": cmd_evaluate,
    "policy": cmd_policy,
    "logs": cmd_logs,
    "keygen": cmd_keygen,
    "manifest": cmd_manifest,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 2
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
