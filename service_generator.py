#!/usr/bin/env python3
"""
Django Deploy Kit — Service Definition Generator
================================================
Renders systemd units and the nginx site for a Django project, and installs
them with validation before activation.

Generated definitions:
  <server>_<project>.service     — web process (gunicorn / uwsgi / daphne)
  celery_<project>.service       — Celery worker      (USE_CELERY=true only)
  celerybeat_<project>.service   — Celery beat        (USE_CELERY=true only)
  sites-available/<project>      — nginx site, enabled via sites-enabled symlink

Activation rules:
  - Every unit is checked with `systemd-analyze verify` before daemon-reload.
  - The nginx site is checked with `nginx -t` before nginx is reloaded.
  - A failed check restores the previously active definition (or removes the
    new one when there was none) and raises ValidationError. Nothing reloads.

Usage (preview only, nothing is installed):
  python3 service_generator.py --outputs-dir ./outputs/preview
"""
import argparse
import sys
from pathlib import Path

from config_loader import CONFIG_FILE, DeploymentConfig, load_config
from console import fail, log, ok, section, warn
from host import Host

SYSTEMD_DIR     = Path("/etc/systemd/system")
NGINX_AVAILABLE = Path("/etc/nginx/sites-available")
NGINX_ENABLED   = Path("/etc/nginx/sites-enabled")

# Extensions never served, whatever location they sit under
DENIED_EXTENSIONS = (".env", ".git", ".pyc", ".db", ".sqlite3")


class ValidationError(RuntimeError):
    """A generated definition failed validation; the previous one is still active."""


# ═══════════════════════════════════════════════════════════════════════════════
#  RENDERING
# ═══════════════════════════════════════════════════════════════════════════════
def _exec_start(cfg: DeploymentConfig) -> str:
    venv, proj, sock = cfg.venv_dir, cfg.project_name, cfg.socket_path
    if cfg.server_kind == "uwsgi":
        return f"""{venv}/bin/uwsgi \\
    --http-socket {sock} \\
    --chmod-socket=660 \\
    --module {proj}.wsgi:application \\
    --master \\
    --processes 3 \\
    --threads 2 \\
    --harakiri 300 \\
    --max-requests 1000 \\
    --vacuum \\
    --die-on-term"""
    if cfg.server_kind == "asgi":
        return f"""{venv}/bin/daphne \\
    --access-log - \\
    -u {sock} \\
    {proj}.asgi:application"""
    return f"""{venv}/bin/gunicorn \\
    --access-logfile - \\
    --workers 3 \\
    --bind unix:{sock} \\
    --worker-class gthread \\
    --threads 2 \\
    --timeout 300 \\
    --max-requests 1000 \\
    --max-requests-jitter 50 \\
    {proj}.wsgi:application"""


def render_web_unit(cfg: DeploymentConfig) -> str:
    label = {"gunicorn": "Gunicorn", "uwsgi": "uWSGI", "asgi": "Daphne"}[cfg.server_kind]
    return f"""[Unit]
Description={label} daemon for {cfg.project_name}
After=network.target postgresql.service

[Service]
User={cfg.app_user}
Group={cfg.app_user}
WorkingDirectory={cfg.project_dir}
Environment="PATH={cfg.venv_dir}/bin"
EnvironmentFile={cfg.project_dir}/.env
ExecStart={_exec_start(cfg)}

[Install]
WantedBy=multi-user.target
"""


def render_celery_units(cfg: DeploymentConfig) -> dict[str, str]:
    """Return {unit_name: text} for the worker and beat units; empty without Celery."""
    if not cfg.use_celery:
        return {}
    venv, proj, logs = cfg.venv_dir, cfg.project_name, cfg.logs_dir
    common = f"""User={cfg.app_user}
Group={cfg.app_user}
WorkingDirectory={cfg.project_dir}
Environment="PATH={venv}/bin"
EnvironmentFile={cfg.project_dir}/.env"""
    worker = f"""[Unit]
Description=Celery Worker for {proj}
After=network.target

[Service]
Type=forking
{common}
RuntimeDirectory=celery
RuntimeDirectoryMode=0755
ExecStart={venv}/bin/celery -A {proj} worker \\
    --loglevel=info \\
    --logfile={logs}/celery_worker.log \\
    --pidfile=/run/celery/%n.pid \\
    --detach
ExecStop={venv}/bin/celery multi stopwait worker \\
    --pidfile=/run/celery/%n.pid
ExecReload={venv}/bin/celery multi restart worker \\
    --pidfile=/run/celery/%n.pid
Restart=always
RestartSec=10

[Install]
WantedBy=multi-user.target
"""
    beat = f"""[Unit]
Description=Celery Beat for {proj}
After=network.target

[Service]
Type=simple
{common}
ExecStart={venv}/bin/celery -A {proj} beat \\
    --loglevel=info \\
    --logfile={logs}/celery_beat.log \\
    --pidfile=/run/celery/beat.pid
Restart=always
RestartSec=10

[Install]
WantedBy=multi-user.target
"""
    worker_name, beat_name = cfg.celery_units
    return {worker_name: worker, beat_name: beat}


def render_units(cfg: DeploymentConfig) -> dict[str, str]:
    """Every systemd unit the project needs, web unit first."""
    return {cfg.web_unit: render_web_unit(cfg), **render_celery_units(cfg)}


def render_nginx_site(cfg: DeploymentConfig) -> str:
    proj, pdir = cfg.project_name, cfg.project_dir
    server_names = " ".join(n for n in (cfg.domain_name or "_", cfg.server_ip) if n)
    denied = "|".join(e.replace(".", r"\.") for e in DENIED_EXTENSIONS)
    return f"""# Django {proj} - Nginx Configuration
upstream {proj}_app {{
    server unix:{cfg.socket_path} fail_timeout=0;
}}

server {{
    listen 80;
    server_name {server_names};
    client_max_body_size 100M;

    # Security headers
    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-Content-Type-Options "nosniff" always;
    add_header X-XSS-Protection "1; mode=block" always;
    add_header Referrer-Policy "strict-origin-when-cross-origin" always;

    # Static files
    location /static/ {{
        alias {pdir}/staticfiles/;
        expires 365d;
        add_header Cache-Control "public, immutable";
    }}

    # Media files
    location /media/ {{
        alias {pdir}/media/;
        expires 30d;
        add_header Cache-Control "public";
    }}

    # Django application
    location / {{
        proxy_set_header Host $http_host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_set_header X-Forwarded-Host $server_name;
        proxy_redirect off;
        proxy_buffering off;
        proxy_pass http://{proj}_app;
        proxy_read_timeout 300s;
        proxy_connect_timeout 75s;
    }}

    # Deny access to hidden files
    location ~ /\\. {{
        deny all;
        access_log off;
        log_not_found off;
    }}

    # Deny access to sensitive files
    location ~* ({denied})$ {{
        deny all;
        access_log off;
        log_not_found off;
    }}
}}
"""


# ═══════════════════════════════════════════════════════════════════════════════
#  INSTALLATION
# ═══════════════════════════════════════════════════════════════════════════════
def _restore(host: Host, path: Path, previous: str | None, mode: int = 0o644) -> None:
    if previous is None:
        host.remove(path)
    else:
        host.write_file(path, previous, mode)


def install_service_units(
    host: Host,
    cfg: DeploymentConfig,
    units: dict[str, str] | None = None,
    unit_dir: Path = SYSTEMD_DIR,
) -> list[str]:
    """Write, verify and start units (default: every unit the project needs). Returns the names."""
    units = render_units(cfg) if units is None else units
    if not units:
        return []
    if any(name in cfg.celery_units for name in units):
        host.run(["mkdir", "-p", cfg.logs_dir])
        host.run(["chown", "-R", f"{cfg.app_user}:{cfg.app_user}", cfg.logs_dir])

    written: dict[str, tuple[Path, str | None]] = {}
    for name, text in units.items():
        path = unit_dir / name
        previous = host.read_text(path)
        if previous == text:
            log(f"{name} unchanged")
            continue
        host.write_file(path, text, 0o644)
        written[name] = (path, previous)

    # All or nothing: one bad unit restores every unit written above
    for name, (path, _) in written.items():
        r = host.run(["systemd-analyze", "verify", str(path)], check=False)
        if not r.ok:
            for p, previous in written.values():
                _restore(host, p, previous)
            fail(f"{name} failed verification — previous definitions kept")
            raise ValidationError(f"{name}: {r.stderr.strip()[:300]}")
    for path, _ in written.values():
        ok(f"Unit written: {path}")

    host.run(["systemctl", "daemon-reload"])
    for name in units:
        host.run(["systemctl", "enable", name])
        host.run(["systemctl", "restart", name])
    ok(f"Services running: {', '.join(units)}")
    return list(units)


def install_nginx_site(
    host: Host,
    cfg: DeploymentConfig,
    available_dir: Path = NGINX_AVAILABLE,
    enabled_dir: Path = NGINX_ENABLED,
) -> Path:
    """Write and enable the site; reload nginx only if `nginx -t` passes."""
    conf = available_dir / cfg.project_name
    link = enabled_dir / cfg.project_name
    text = render_nginx_site(cfg)

    previous = host.read_text(conf)
    link_existed = host.exists(link)
    if previous == text and link_existed:
        log(f"nginx site {conf} unchanged")
        return conf

    host.write_file(conf, text, 0o644)
    host.symlink(conf, link)
    r = host.run(["nginx", "-t"], check=False)
    if not r.ok:
        _restore(host, conf, previous)
        if not link_existed:
            host.remove(link)
        fail("nginx configuration test failed — previous site kept, nginx not reloaded")
        raise ValidationError(f"nginx -t: {(r.stderr or r.stdout).strip()[:300]}")

    host.run(["systemctl", "reload", "nginx"])
    ok(f"nginx site enabled: {conf}")
    return conf


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Render systemd units and the nginx site for preview"
    )
    parser.add_argument("--config",      default=str(CONFIG_FILE), help="Configuration file")
    parser.add_argument("--outputs-dir", required=True,            help="Directory to write rendered files")
    args = parser.parse_args()

    cfg = load_config(args.config)
    if cfg is None:
        print(f"No configuration at {args.config}. Run: python3 wizard.py")
        sys.exit(1)

    out = Path(args.outputs_dir)
    out.mkdir(parents=True, exist_ok=True)
    section("Rendering service definitions")
    for name, text in render_units(cfg).items():
        (out / name).write_text(text)
        ok(f"{out / name}")
    (out / f"nginx-{cfg.project_name}.conf").write_text(render_nginx_site(cfg))
    ok(f"{out / f'nginx-{cfg.project_name}.conf'}")
    if not cfg.domain_name:
        warn("No DOMAIN_NAME set — nginx will answer on the default server name '_'")


if __name__ == "__main__":
    main()
