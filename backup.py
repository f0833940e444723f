#!/usr/bin/env python3
"""
Backup / Restore — Django Deploy Kit
====================================
Timestamped snapshots of a deployed project:

  backups/<YYYYmmdd_HHMMSS>/
    database.sql                 pg_dump of DB_NAME
    project.tar.gz               PROJECT_DIR without *.pyc, __pycache__, node_modules, .git
    <project>                    nginx site
    <unit>.service               every generated systemd unit that exists
    manifest.yaml                what was captured, and from where

Snapshots are never modified or pruned. Restore only selects a snapshot and
prints the manual runbook for it; nothing on the host is replaced.
"""
import argparse
import shutil
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import yaml

from config_loader import CONFIG_FILE, DeploymentConfig, load_config
from console import fail, log, ok, section, warn
from host import CommandError, Host
from service_generator import NGINX_AVAILABLE, SYSTEMD_DIR
from wizard import Prompter, make_prompter

BACKUP_ROOT = Path("backups")
MANIFEST = "manifest.yaml"
PARTIAL_SUFFIX = ".partial"
TAR_EXCLUDES = ["*.pyc", "__pycache__", "node_modules", ".git"]


@dataclass
class BackupRecord:
    path: Path
    created: str
    project: str = ""
    artifacts: list[str] = field(default_factory=list)
    sources: dict[str, str] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> "BackupRecord":
        """Read a snapshot directory; falls back to its listing without a manifest."""
        manifest = path / MANIFEST
        if manifest.exists():
            data = yaml.safe_load(manifest.read_text()) or {}
            return cls(
                path=path,
                created=str(data.get("created", path.name)),
                project=data.get("project", ""),
                artifacts=list(data.get("artifacts", [])),
                sources=dict(data.get("sources", {})),
            )
        return cls(path=path, created=path.name,
                   artifacts=sorted(p.name for p in path.iterdir()))

    def to_manifest(self) -> dict:
        return {
            "created": self.created,
            "project": self.project,
            "artifacts": self.artifacts,
            "sources": self.sources,
        }


def backup_project(host: Host, cfg: DeploymentConfig, backup_root: Path = BACKUP_ROOT,
                   ts: str | None = None) -> BackupRecord:
    """Snapshot the database, project tree and active service definitions.

    The snapshot is built in ``<ts>.partial`` and renamed once its manifest is
    written; a failed backup leaves nothing behind.
    """
    section("Backup")
    ts = ts or datetime.now().strftime("%Y%m%d_%H%M%S")
    dest = backup_root / ts
    if dest.exists():
        raise FileExistsError(f"Backup {dest} already exists")
    work = backup_root / f"{ts}{PARTIAL_SUFFIX}"
    work.mkdir(parents=True, exist_ok=False)
    record = BackupRecord(path=dest, created=ts, project=cfg.project_name)

    try:
        log(f"Dumping database {cfg.db_name}")
        dump = host.run(["pg_dump", cfg.db_name], user="postgres")
        (work / "database.sql").write_text(dump.stdout)
        record.artifacts.append("database.sql")
        record.sources["database.sql"] = f"postgres:{cfg.db_name}"

        log(f"Archiving {cfg.project_dir}")
        excludes = [f"--exclude={pattern}" for pattern in TAR_EXCLUDES]
        host.run(["tar", "-czf", str(work / "project.tar.gz"), *excludes, cfg.project_dir])
        record.artifacts.append("project.tar.gz")
        record.sources["project.tar.gz"] = cfg.project_dir

        definitions = [NGINX_AVAILABLE / cfg.project_name]
        definitions += [SYSTEMD_DIR / name for name in [cfg.web_unit, *cfg.celery_units]]
        for src in definitions:
            if not host.exists(src):
                continue
            host.copy(src, work / src.name)
            record.artifacts.append(src.name)
            record.sources[src.name] = str(src)

        (work / MANIFEST).write_text(yaml.safe_dump(record.to_manifest(), sort_keys=False))
    except (CommandError, OSError):
        shutil.rmtree(work, ignore_errors=True)
        fail(f"Backup failed — {work} removed")
        raise
    work.rename(dest)
    ok(f"Backup created at {dest}")
    return record


def list_backups(backup_root: Path = BACKUP_ROOT) -> list[BackupRecord]:
    """Every snapshot under backup_root, newest first."""
    if not backup_root.is_dir():
        return []
    dirs = sorted((p for p in backup_root.iterdir() if p.is_dir() and not p.name.endswith(PARTIAL_SUFFIX)),
                  key=lambda p: p.name, reverse=True)
    return [BackupRecord.load(p) for p in dirs]


def runbook(record: BackupRecord) -> str:
    """Manual restore steps for a snapshot."""
    lines = [f"Restore from {record.path} (created {record.created}):", ""]
    src = record.sources
    if "database.sql" in record.artifacts:
        db = src.get("database.sql", "postgres:<db>").split(":", 1)[-1]
        lines.append(f"  sudo -u postgres psql {db} < {record.path / 'database.sql'}")
    if "project.tar.gz" in record.artifacts:
        lines.append(f"  sudo tar -xzf {record.path / 'project.tar.gz'} -C /")
    for name in record.artifacts:
        if name in src and name not in ("database.sql", "project.tar.gz"):
            lines.append(f"  sudo cp {record.path / name} {src[name]}")
    lines += [
        "  sudo systemctl daemon-reload",
        "  sudo nginx -t && sudo systemctl reload nginx",
        "  # then restart the project's services (menu: Restart Services)",
    ]
    return "\n".join(lines)


def restore(prompter: Prompter, backup_root: Path = BACKUP_ROOT) -> BackupRecord | None:
    """Select and confirm a snapshot, then show its runbook. Runs no commands."""
    records = list_backups(backup_root)
    if not records:
        warn(f"No backups found under {backup_root}")
        return None
    options = [(r.path.name, f"{r.project or '?'} — {len(r.artifacts)} artifacts") for r in records]
    chosen = prompter.ask_choice("Select backup to restore:", options)
    record = next((r for r in records if r.path.name == chosen), None)
    if record is None:
        return None
    if not prompter.ask_yes_no(f"Restore from backup: {record.path}?", False):
        log("Restore cancelled")
        return None
    log(f"Restoring from backup: {record.path}")
    prompter.show("Manual restore steps", runbook(record))
    ok("Rollback initiated (manual steps required)")
    return record


def main() -> None:
    parser = argparse.ArgumentParser(description="Back up or restore a Django deployment")
    parser.add_argument("action", choices=["backup", "list", "restore"])
    parser.add_argument("--config", default=str(CONFIG_FILE))
    parser.add_argument("--root",   default=str(BACKUP_ROOT), help="Backup directory")
    parser.add_argument("--ui",     choices=["terminal", "whiptail"], default="terminal")
    args = parser.parse_args()
    root = Path(args.root)

    try:
        run_action(args, root)
    except CommandError as e:
        fail(f"Backup failed: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        warn("Interrupted")
        sys.exit(130)


def run_action(args, root: Path) -> None:
    if args.action == "list":
        for r in list_backups(root):
            print(f"  {r.path.name}  {r.project:<20} {', '.join(r.artifacts)}")
    elif args.action == "restore":
        restore(make_prompter(args.ui), root)
    else:
        cfg = load_config(args.config)
        if cfg is None:
            fail(f"No configuration at {args.config}")
            sys.exit(1)
        backup_project(Host(), cfg, root)


if __name__ == "__main__":
    main()
