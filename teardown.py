#!/usr/bin/env python3
"""
Django Deploy Kit — Uninstall
=============================
Removes what the deploy pipeline created for one project. Discovery is driven
by PROJECT_NAME from .django_deploy.conf.

Removal Order (reverse of deployment):
  1. systemd units (stop, disable, delete, daemon-reload)
  2. nginx site + sites-enabled link (then `nginx -t` and reload)
  3. Project directory                       (asked separately)
  4. PostgreSQL database and role            (asked separately)

A failed removal is recorded and the next one is attempted; the summary and a
JSON report list what was deleted and what was not.

Usage:
  python3 teardown.py               # Interactive (confirms each destructive group)
  python3 teardown.py --dry-run     # Show what would be removed, change nothing
  python3 teardown.py --force       # No confirmation prompts
"""
import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable

from config_loader import CONFIG_FILE, DeploymentConfig, load_config
from console import fail, log, ok, section, warn
from host import CommandError, Host
from service_generator import NGINX_AVAILABLE, NGINX_ENABLED, SYSTEMD_DIR
from wizard import Prompter, make_prompter

OUTPUTS_DIR = Path("outputs")


def confirm(prompter: Prompter, prompt: str, force: bool = False) -> bool:
    """Ask for confirmation unless --force."""
    if force:
        log(f"AUTO-CONFIRM: {prompt}")
        return True
    return prompter.ask_yes_no(prompt, default=False)


def discover(host: Host, cfg: DeploymentConfig,
             unit_dir: Path = SYSTEMD_DIR,
             available_dir: Path = NGINX_AVAILABLE,
             enabled_dir: Path = NGINX_ENABLED) -> dict:
    """Find the project's generated artifacts that exist on the host."""
    names = [cfg.web_unit, *cfg.celery_units]
    # Units from a previous deployment type may still be installed
    for prefix in ("gunicorn", "uwsgi", "daphne"):
        name = f"{prefix}_{cfg.project_name}.service"
        if name not in names:
            names.append(name)
    site, link = available_dir / cfg.project_name, enabled_dir / cfg.project_name
    return {
        "units": [unit_dir / n for n in names if host.exists(unit_dir / n)],
        "nginx": [p for p in (link, site) if host.exists(p)],
        "project_dir": Path(cfg.project_dir) if cfg.project_dir and host.is_dir(Path(cfg.project_dir)) else None,
    }


def _attempt(results: dict, kind: str, name: str, action: Callable[[], object]) -> bool:
    try:
        action()
    except CommandError as e:
        warn(f"Could not remove {kind} {name}: {e}")
        results["errors"].append({"type": kind, "name": name, "error": str(e)[:100]})
        return False
    ok(f"Removed {kind}: {name}")
    results["deleted"].append({"type": kind, "name": name})
    return True


def _drop_database(host: Host, cfg: DeploymentConfig) -> None:
    db = '"' + cfg.db_name.replace('"', '""') + '"'
    role = '"' + cfg.db_user.replace('"', '""') + '"'
    host.run(
        ["psql", "-v", "ON_ERROR_STOP=1", "-f", "-"], user="postgres",
        input=f"DROP DATABASE IF EXISTS {db};\nDROP ROLE IF EXISTS {role};\n",
    )


def uninstall(
    host: Host,
    cfg: DeploymentConfig,
    prompter: Prompter,
    dry_run: bool = False,
    force: bool = False,
    outputs_dir: Path = OUTPUTS_DIR,
    **dirs,
) -> dict:
    """Remove the project's units, nginx site and optionally files and database.

    Returns the report dict ({"deleted": [...], "errors": [...], ...}).
    """
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    results: dict = {"timestamp": ts, "project": cfg.project_name, "deleted": [], "errors": []}

    print("\n" + "═" * 60)
    print("  DJANGO DEPLOY KIT — UNINSTALL")
    print(f"  Project: {cfg.project_name}")
    if dry_run:
        print("  *** DRY RUN MODE — No changes will be made ***")
    print("═" * 60 + "\n")

    # ── Step 1: Discover ──────────────────────────────────────
    section("Step 1: Discovering project artifacts")
    found = discover(host, cfg, **dirs)
    for p in found["units"]:
        log(f"  unit:     {p}")
    for p in found["nginx"]:
        log(f"  nginx:    {p}")
    if found["project_dir"]:
        log(f"  files:    {found['project_dir']}")
    log(f"  database: {cfg.db_name} (role {cfg.db_user})")

    if dry_run:
        results["dry_run"] = True
        results["would_delete"] = [str(p) for p in found["units"] + found["nginx"]]
        if found["project_dir"]:
            results["would_delete"].append(str(found["project_dir"]))
        ok("Dry run complete — nothing was removed")
        return results

    if not confirm(prompter, "WARNING: This will remove the project's services and nginx site. Continue?", force):
        log("Uninstall cancelled")
        results["cancelled"] = True
        return results

    # ── Step 2: systemd units ─────────────────────────────────
    section("Step 2: systemd units")
    for path in found["units"]:
        host.run(["systemctl", "stop", path.name], check=False)
        host.run(["systemctl", "disable", path.name], check=False)
        _attempt(results, "unit", path.name, lambda p=path: host.remove(p))
    if found["units"]:
        _attempt(results, "daemon-reload", "systemd", lambda: host.run(["systemctl", "daemon-reload"]))

    # ── Step 3: nginx ─────────────────────────────────────────
    section("Step 3: nginx site")
    for path in found["nginx"]:
        _attempt(results, "nginx", str(path), lambda p=path: host.remove(p))
    if found["nginx"]:
        if host.run(["nginx", "-t"], check=False).ok:
            host.run(["systemctl", "reload", "nginx"], check=False)
        else:
            fail("nginx configuration test failed after removing the site — nginx not reloaded")
            results["errors"].append({"type": "nginx", "name": "nginx -t", "error": "configuration test failed"})

    # ── Step 4: project files ─────────────────────────────────
    section("Step 4: Project files")
    pdir = found["project_dir"]
    if pdir and confirm(prompter, f"Remove project directory {pdir}?", force):
        _attempt(results, "project_dir", str(pdir), lambda: host.remove(pdir, recursive=True))
    else:
        log("Project directory kept")

    # ── Step 5: database ──────────────────────────────────────
    section("Step 5: Database")
    if confirm(prompter, f"Drop database {cfg.db_name} and role {cfg.db_user}? This cannot be undone.", force):
        _attempt(results, "database", cfg.db_name, lambda: _drop_database(host, cfg))
    else:
        log("Database kept")

    # ── Summary ───────────────────────────────────────────────
    section("Uninstall Summary")
    print(f"  Deleted:  {len(results['deleted'])}")
    print(f"  Errors:   {len(results['errors'])}")
    for item in results["deleted"]:
        print(f"  OK   {item['type']}: {item['name']}")
    for item in results["errors"]:
        print(f"  FAIL {item['type']}: {item.get('error', '?')[:60]}")

    outputs_dir.mkdir(parents=True, exist_ok=True)
    report_path = outputs_dir / f"teardown_report_{ts}.json"
    report_path.write_text(json.dumps(results, indent=2))
    ok(f"Uninstall report: {report_path}")
    if results["errors"]:
        warn(f"Uninstall completed with {len(results['errors'])} error(s)")
    return results


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Remove a Django deployment created by this kit")
    parser.add_argument("--force",   action="store_true", help="No confirmation prompts")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be removed without removing")
    parser.add_argument("--config",  default=str(CONFIG_FILE))
    parser.add_argument("--ui",      choices=["terminal", "whiptail"], default="terminal")
    args = parser.parse_args()
    cfg = load_config(args.config)
    if cfg is None:
        fail(f"No configuration at {args.config}")
        sys.exit(1)
    report = uninstall(Host(), cfg, make_prompter(args.ui), dry_run=args.dry_run, force=args.force)
    sys.exit(1 if report["errors"] else 0)
