#!/usr/bin/env python3
"""Monitoring — resource/service/log report, disk alarm, log viewing, service restart."""
import argparse
import re
import sys
from datetime import datetime
from pathlib import Path

from config_loader import CONFIG_FILE, DeploymentConfig, load_config
from console import fail, log, ok, warn
from host import Host

DISK_ALARM_PCT = 85
LOG_DIR = Path("logs")


def _block(title: str, body: str) -> str:
    return f"=== {title} ===\n{body.rstrip()}\n"


def disk_usage(host: Host) -> int | None:
    """Root filesystem usage in percent, or None if df gave nothing usable."""
    r = host.run(["df", "/", "--output=pcent"], check=False)
    m = re.search(r"(\d+)%", r.stdout.splitlines()[-1] if r.stdout.strip() else "")
    return int(m.group(1)) if m else None


def disk_usage_alarm(host: Host, threshold: int = DISK_ALARM_PCT) -> str:
    usage = disk_usage(host)
    if usage is None:
        return "Disk usage: unknown"
    if usage > threshold:
        warn(f"Disk usage is at {usage}%")
        return f"WARNING: Disk usage is at {usage}%"
    return "Disk usage: OK"


def monitoring_report(host: Host, cfg: DeploymentConfig) -> str:
    """Everything an operator looks at first, as one text block."""
    out = [f"Monitoring report for {cfg.project_name} - {datetime.now():%Y%m%d_%H%M%S}", "=" * 46]

    resources = [
        host.run(["free", "-h"], check=False).stdout,
        host.run(["df", "-h", "/"], check=False).stdout,
        "\n".join(host.run(["top", "-bn1"], check=False).stdout.splitlines()[:20]),
    ]
    out.append(_block("System Resources", "\n".join(resources)))

    status = []
    for unit in [cfg.web_unit, *cfg.celery_units]:
        r = host.run(["systemctl", "status", unit, "--no-pager"], check=False)
        status.append(r.stdout or f"{unit}: {r.stderr.strip() or 'not found'}")
    out.append(_block("Service Status", "\n".join(status)))

    logs = [host.run(["journalctl", "-u", cfg.web_unit, "-n", "50", "--no-pager"], check=False).stdout
            or f"No {cfg.web_unit} journal entries"]
    if cfg.use_celery:
        for name in ("celery_worker.log", "celery_beat.log"):
            r = host.run(["tail", "-n", "50", f"{cfg.logs_dir}/{name}"], check=False)
            logs.append(r.stdout if r.ok else f"No {name} found")
    out.append(_block("Application Logs", "\n".join(logs)))

    out.append(disk_usage_alarm(host))
    return "\n".join(out)


def newest_log(log_dir: Path = LOG_DIR) -> Path | None:
    logs = sorted(log_dir.glob("deployment_*.log")) if log_dir.is_dir() else []
    return logs[-1] if logs else None


def view_logs(host: Host, cfg: DeploymentConfig, log_dir: Path = LOG_DIR, lines: int = 100) -> str:
    """Tail of the newest deployment log, else the web unit's journal."""
    path = newest_log(log_dir)
    if path is not None:
        return "\n".join(path.read_text(errors="replace").splitlines()[-lines:])
    r = host.run(["journalctl", "-u", cfg.web_unit, "-n", "50", "--no-pager"], check=False)
    return r.stdout if r.ok and r.stdout.strip() else "No logs found"


def restart_services(host: Host, cfg: DeploymentConfig) -> list[str]:
    units = [cfg.web_unit, *cfg.celery_units]
    for unit in units:
        host.run(["systemctl", "restart", unit])
        log(f"Restarted {unit}")
    ok("Services restarted successfully")
    return units


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Monitoring report for a deployed project")
    parser.add_argument("--config", default=str(CONFIG_FILE))
    args = parser.parse_args()
    cfg = load_config(args.config)
    if cfg is None:
        fail(f"No configuration at {args.config}")
        sys.exit(1)
    print(monitoring_report(Host(), cfg))
