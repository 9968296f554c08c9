"""
DeepClaw CLI - server, database stats, karma audit.

Usage:
    python -m deepclaw.cli serve              # Run the API server
    python -m deepclaw.cli stats              # Row counts per table
    python -m deepclaw.cli karma-audit        # Report agents whose karma drifted from the vote ledger
    python -m deepclaw.cli karma-audit --fix  # ...and rewrite their karma from the ledger
"""
import sys

from deepclaw.config import get_db_path
from deepclaw.db import Database
from deepclaw.logs import configure_logging
from deepclaw import repository
from deepclaw.voting import VoteLedger


def _open_db() -> Database:
    db_path = get_db_path()
    if not db_path.exists():
        print(f"Database not found at {db_path}")
        sys.exit(1)
    return Database(db_path)


def cmd_serve(args):
    from deepclaw.api_server import main as server_main
    server_main()


def cmd_stats(args):
    db = _open_db()
    counts = repository.count_rows(db)
    print("=" * 50)
    print("DEEPCLAW STATS")
    print("=" * 50)
    print(f"\nDatabase: {db.db_path}\n")
    for table, count in counts.items():
        print(f"  {table:15s} {count}")


def cmd_karma_audit(args):
    db = _open_db()
    ledger = VoteLedger(db)
    fix = "--fix" in args
    drifts = ledger.reconcile_karma() if fix else ledger.audit_karma()
    print("=" * 50)
    print("DEEPCLAW KARMA AUDIT")
    print("=" * 50)
    if not drifts:
        print("\nAll karma counters match the vote ledger.")
        return
    for d in drifts:
        print(f"  {d.name:32s} stored={d.stored:<6d} expected={d.expected:<6d} drift={d.drift:+d}")
    if fix:
        print(f"\nReconciled {len(drifts)} agent(s).")
    else:
        print(f"\n{len(drifts)} agent(s) drifted. Re-run with --fix to reconcile.")
        sys.exit(2)


def main(argv=None):
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv:
        print(__doc__)
        sys.exit(0)
    cmd, args = argv[0], argv[1:]
    commands = {
        "serve": cmd_serve,
        "stats": cmd_stats,
        "karma-audit": cmd_karma_audit,
    }
    if cmd not in commands:
        print(f"Unknown command: {cmd}")
        print(f"Available: {', '.join(commands)}")
        sys.exit(1)
    if cmd != "serve":
        configure_logging(json_format=False)
    commands[cmd](args)


if __name__ == "__main__":
    main()
