#!/usr/bin/env python3
"""
cloudbackup  —  append-only cloud backup with rotating integrity checks
======================================================================

Subcommands:
  init      Create a .cloudbackup config file in the current directory.
  run       Upload new files, then verify local and remote copies.
  status    Show ledger size, lock state and today's error count.

Run 'cloudbackup <subcommand> --help' for more details.
"""
import sys
import argparse
from datetime import date
from pathlib import Path

EXIT_USAGE = 2


# ── helpers ──────────────────────────────────────────────────────────────────

def _load_config(args):
    from cloudbackup.config import load_backup_config
    from cloudbackup.errors import ConfigError

    config_path = Path(args.config).expanduser() if getattr(args, "config", None) else None
    try:
        cfg = load_backup_config(config_path, args.profile or "default")
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        print("Run 'cloudbackup init' to create a config file.", file=sys.stderr)
        sys.exit(EXIT_USAGE)
    if args.verbose:
        print(f"[config] profile {cfg.profile_name}, state in {cfg.state_dir}")
    return cfg


def _yq(value: str) -> str:
    """Wrap a string in YAML single quotes, escaping embedded single quotes."""
    return "'" + value.replace("'", "''") + "'"


def _ask(label: str, current):
    if not sys.stdin.isatty():
        return current
    val = input(f"{label} [{current}]: ").strip()
    return val or current


# ── init ─────────────────────────────────────────────────────────────────────

def cmd_init(args):
    """Create a .cloudbackup profile file in the current directory."""
    from cloudbackup import config as _cfg

    target = Path.cwd() / _cfg.CONFIG_FILENAME

    if target.exists() and not args.force:
        print(f"error: {_cfg.CONFIG_FILENAME} already exists in {Path.cwd()}", file=sys.stderr)
        print("Use --force to overwrite.", file=sys.stderr)
        sys.exit(1)

    g_defaults = _cfg.load_global_config().get("defaults", {}) or {}

    server = args.server or _ask("Server hostname", g_defaults.get("server", "example.com"))
    user = args.user or _ask("SSH user", g_defaults.get("user", "backup"))
    port = args.port or _ask("SSH port", g_defaults.get("port", _cfg.SSH_PORT))
    try:
        port = int(port)
    except ValueError:
        print("error: port must be a number.", file=sys.stderr)
        sys.exit(1)
    local_root = args.local_root or _ask("Local root (the part not mirrored remotely)", "/")
    backup_dir = args.backup_dir or _ask("Directory to back up, relative to local root", "")
    url = args.healthchecks_url or _ask("Healthchecks ping URL",
                                        g_defaults.get("healthchecks_url", ""))

    if not backup_dir:
        print("error: --backup-dir is required.", file=sys.stderr)
        sys.exit(1)
    if not url:
        print("error: --healthchecks-url is required.", file=sys.stderr)
        sys.exit(1)

    lines = [
        "# .cloudbackup — cloudbackup configuration",
        "#",
        "# backup_dir is relative to local_root and is mirrored at the same",
        "# relative path under the remote home directory.",
        "profiles:",
        f"  - name: {args.profile or 'default'}",
        f"    server: {_yq(str(server))}",
        f"    port: {port}",
        f"    user: {_yq(str(user))}",
        f"    local_root: {_yq(str(local_root).replace(chr(92), '/'))}",
        f"    backup_dir: {_yq(str(backup_dir))}",
        f"    healthchecks_url: {_yq(str(url))}",
        f"    checksums_per_run: {_cfg.CHECKSUMS_PER_RUN}",
        f"    max_lock_wait_minutes: {_cfg.MAX_LOCK_WAIT_MINUTES}",
        f"    capacity_threshold: {_cfg.CAPACITY_THRESHOLD}",
    ]
    if args.ssh_key:
        lines.append(f"    ssh_key: {_yq(args.ssh_key)}")
    content = "\n".join(lines) + "\n"

    if args.dry_run:
        print(f"[dry-run] Would write {target}:")
        print(content)
        return

    target.write_text(content, encoding="utf-8")
    print(f"Created {target}")
    if args.verbose:
        print(content)


# ── run ──────────────────────────────────────────────────────────────────────

def cmd_run(args):
    """Run one backup + verification cycle; exit status is the anomaly count."""
    from cloudbackup.core.backup_engine import run_backup

    cfg = _load_config(args)
    if args.checksums_per_run is not None:
        cfg = cfg.with_overrides(checksums_per_run=args.checksums_per_run)
    sys.exit(run_backup(cfg, verbose=args.verbose))


# ── status ───────────────────────────────────────────────────────────────────

def cmd_status(args):
    """Show ledger size, lock state and today's error count."""
    from cloudbackup.state.ledger import Ledger
    from cloudbackup.state.lock import RunLock

    cfg = _load_config(args)
    day = date.today().isoformat()
    errors_path = cfg.log_path("ERRORS", day)
    lock = RunLock(
        cfg.lock_path,
        [cfg.log_path("script_stdout", day), cfg.ledger_path,
         cfg.local_files_path, cfg.log_path("rsync_logs", day)],
        cfg.max_lock_wait_minutes,
    )

    try:
        ledger = Ledger.load(cfg.ledger_path)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)

    n_errors = 0
    if errors_path.exists():
        with errors_path.open("r", encoding="utf-8", errors="replace") as f:
            n_errors = sum(1 for _ in f)

    print(f"\nProfile : {cfg.profile_name}")
    print(f"Local   : {cfg.backup_root}")
    print(f"Remote  : {cfg.remote}:{cfg.port}:{cfg.backup_dir}")
    print(f"Ledger  : {len(ledger)} file(s) in {cfg.ledger_path}")
    if len(ledger) and cfg.checksums_per_run:
        cycle = -(-len(ledger) // cfg.checksums_per_run)
        print(f"Cycle   : every file re-verified within {cycle} run(s)")
    print(f"Errors  : {n_errors} line(s) in {errors_path.name}")
    if lock.is_busy():
        print("\n⚠  A run is in progress.")
    elif cfg.lock_path.exists():
        print("\n⚠  Stale lock file present; the next run will override it.")
    else:
        print("\nNo run in progress.")


# ── main ──────────────────────────────────────────────────────────────────────

def main():
    """CLI entry point for cloudbackup"""
    parser = argparse.ArgumentParser(
        prog="cloudbackup",
        description="Append-only cloud backup with rotating integrity checks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # ── init ──────────────────────────────────────────────────────────────────
    init_p = subparsers.add_parser(
        "init",
        help="Create a .cloudbackup config file in the current directory",
        description="Create a .cloudbackup YAML config file.",
    )
    init_p.add_argument("--server", metavar="HOST", help="Remote SSH host")
    init_p.add_argument("--user", metavar="NAME", help="SSH username")
    init_p.add_argument("--port", type=int, metavar="N", help="SSH port (default: 23)")
    init_p.add_argument("--ssh-key", metavar="PATH", help="Private key for SSH")
    init_p.add_argument("--local-root", metavar="PATH",
                        help="Local prefix that is not mirrored remotely (default: /)")
    init_p.add_argument("--backup-dir", metavar="PATH",
                        help="Directory to back up, relative to --local-root")
    init_p.add_argument("--healthchecks-url", metavar="URL", help="Status ping URL")
    init_p.add_argument("--profile", metavar="NAME", default="default",
                        help="Profile name to create (default: default)")
    init_p.add_argument("--force", action="store_true", help="Overwrite existing .cloudbackup")
    init_p.add_argument("-n", "--dry-run", action="store_true",
                        help="Preview without writing files")
    init_p.add_argument("-v", "--verbose", action="store_true", help="Show extra output")

    # ── run ───────────────────────────────────────────────────────────────────
    run_p = subparsers.add_parser(
        "run",
        help="Upload new files and verify both copies",
        description="Run one backup cycle using the nearest .cloudbackup config.",
    )
    run_p.add_argument("--config", metavar="PATH", help="Config file (default: search upward)")
    run_p.add_argument("--profile", metavar="NAME", default="default",
                       help="Profile to use (default: default)")
    run_p.add_argument("--checksums-per-run", type=int, metavar="N",
                       help="Override the verification window size")
    run_p.add_argument("-v", "--verbose", action="store_true",
                       help="Show every file and command")

    # ── status ────────────────────────────────────────────────────────────────
    status_p = subparsers.add_parser(
        "status",
        help="Show ledger size, lock state and today's errors",
        description="Show backup status for the nearest .cloudbackup config.",
    )
    status_p.add_argument("--config", metavar="PATH", help="Config file (default: search upward)")
    status_p.add_argument("--profile", metavar="NAME", default="default",
                          help="Profile to use (default: default)")
    status_p.add_argument("-v", "--verbose", action="store_true", help="Show extra output")

    args = parser.parse_args()

    if args.command == "init":
        cmd_init(args)
    elif args.command == "run":
        if args.checksums_per_run is not None and args.checksums_per_run < 0:
            run_p.error("--checksums-per-run must be >= 0")
        cmd_run(args)
    elif args.command == "status":
        cmd_status(args)
    else:
        parser.print_help()
        sys.exit(EXIT_USAGE)


if __name__ == "__main__":
    main()
