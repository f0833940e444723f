#!/usr/bin/env python3
"""
Config Loader — Django Deploy Kit
=================================
Loads and saves the deployment configuration (.django_deploy.conf).

Security model:
  - The file is plain KEY="value" lines, parsed with python-dotenv and never
    executed. Unknown keys and malformed values are rejected.
  - The file holds credentials (DB_PASS, EMAIL_PASS, DJANGO_SECRET_KEY) and is
    always written with mode 0600.

Usage:
  from config_loader import load_config, save_config
  cfg = load_config()          # DeploymentConfig, or None if no file yet
  print(cfg.project_name)
  save_config(cfg)
"""
import dataclasses
import os
import re
import sys
import tempfile
from dataclasses import dataclass, fields
from datetime import datetime
from pathlib import Path
from typing import Any

from dotenv import dotenv_values

CONFIG_FILE = Path(".django_deploy.conf")

DEPLOYMENT_TYPES = ("gunicorn", "uwsgi", "asgi")

# Fields that must be non-empty before any provisioning step runs
REQUIRED_FIELDS = (
    "project_name", "project_dir", "venv_dir", "app_user",
    "db_name", "db_user", "db_pass",
)
SECRET_FIELDS = ("db_pass", "django_secret_key", "email_pass")


@dataclass(frozen=True)
class DeploymentConfig:
    """Deployment parameters. Build new instances instead of mutating."""

    project_name: str = ""
    project_dir: str = ""
    venv_dir: str = ""
    app_user: str = ""
    db_name: str = ""
    db_user: str = ""
    db_pass: str = ""
    django_secret_key: str = ""
    django_debug: bool = False
    allowed_hosts: str = ""
    server_ip: str = ""
    deployment_type: str = ""
    use_celery: bool = False
    use_docker: bool = False
    git_repo: str = ""
    git_branch: str = "main"
    domain_name: str = ""
    email_host: str = ""
    email_port: str = "587"
    email_user: str = ""
    email_pass: str = ""

    # ── Derived values ────────────────────────────────────────
    @property
    def server_kind(self) -> str:
        return self.deployment_type or "gunicorn"

    @property
    def socket_path(self) -> str:
        return f"{self.project_dir}/{self.project_name}.sock"

    @property
    def web_unit(self) -> str:
        prefix = {"gunicorn": "gunicorn", "uwsgi": "uwsgi", "asgi": "daphne"}[self.server_kind]
        return f"{prefix}_{self.project_name}.service"

    @property
    def celery_units(self) -> list[str]:
        if not self.use_celery:
            return []
        return [f"celery_{self.project_name}.service", f"celerybeat_{self.project_name}.service"]

    @property
    def logs_dir(self) -> str:
        return f"{self.project_dir}/logs"

    # ── Conversion ────────────────────────────────────────────
    @classmethod
    def from_mapping(cls, values: dict[str, Any]) -> "DeploymentConfig":
        """Build a validated config from a field-name mapping (lowercase keys)."""
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(values) - set(known))
        if unknown:
            raise ValueError(f"Unknown configuration keys: {unknown}")
        kwargs: dict[str, Any] = {}
        for name, value in values.items():
            if value is None:
                continue
            if known[name].type in (bool, "bool"):
                kwargs[name] = _parse_bool(name, value)
            else:
                kwargs[name] = str(value)
        cfg = cls(**kwargs)
        cfg.validate()
        return cfg

    def to_file_values(self) -> dict[str, str]:
        """Return every field keyed by its file key (uppercase), as strings."""
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            out[f.name.upper()] = ("true" if value else "false") if isinstance(value, bool) else value
        return out

    def replace(self, **changes) -> "DeploymentConfig":
        cfg = dataclasses.replace(self, **changes)
        cfg.validate()
        return cfg

    # ── Validation ────────────────────────────────────────────
    def validate(self) -> None:
        """Check value formats. Empty fields are allowed here."""
        errors = []
        if self.project_name and not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", self.project_name):
            errors.append(
                f"PROJECT_NAME '{self.project_name}' must be a Python identifier "
                f"(it names the Django module and the systemd units)"
            )
        if self.deployment_type and self.deployment_type not in DEPLOYMENT_TYPES:
            errors.append(f"DEPLOYMENT_TYPE '{self.deployment_type}' must be one of {list(DEPLOYMENT_TYPES)}")
        if self.email_port:
            if not self.email_port.isdigit() or not 1 <= int(self.email_port) <= 65535:
                errors.append(f"EMAIL_PORT '{self.email_port}' must be a port number (1-65535)")
        for name in ("project_dir", "venv_dir"):
            value = getattr(self, name)
            if value and not value.startswith("/"):
                errors.append(f"{name.upper()} '{value}' must be an absolute path")
        if errors:
            raise ValueError("Invalid configuration:\n  " + "\n  ".join(errors))

    def require_deployable(self) -> None:
        """Raise ValueError if any field needed by the provisioning steps is empty."""
        missing = [name.upper() for name in REQUIRED_FIELDS if not getattr(self, name)]
        if missing:
            raise ValueError(
                f"Configuration is missing required values: {missing}\n"
                f"Re-run the configuration wizard."
            )


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    v = str(value).strip().lower()
    if v == "true":
        return True
    if v in ("false", ""):
        return False
    raise ValueError(f"{name.upper()} must be 'true' or 'false', got '{value}'")


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def load_config(config_path: Path | str = CONFIG_FILE) -> DeploymentConfig | None:
    """
    Load the deployment configuration.

    Args:
        config_path: Path to the configuration file

    Returns:
        DeploymentConfig, or None if the file does not exist

    Raises:
        ValueError: If the file holds unknown keys or malformed values
    """
    path = Path(config_path)
    if not path.exists():
        return None
    raw = dotenv_values(path, interpolate=False)
    bad = [k for k in raw if not re.fullmatch(r"[A-Z][A-Z0-9_]*", k)]
    if bad:
        raise ValueError(f"{path}: malformed keys: {bad}")
    return DeploymentConfig.from_mapping({k.lower(): v for k, v in raw.items()})


def save_config(cfg: DeploymentConfig, config_path: Path | str = CONFIG_FILE) -> Path:
    """Write every recognized field to config_path with mode 0600; return the path."""
    path = Path(config_path)
    ts = datetime.now().strftime("%Y-%m-%d %H:%M")
    lines = [
        "# Django Deployment Configuration",
        f"# Generated: {ts}",
        "",
    ]
    lines += [f"{k}={_quote(v)}" for k, v in cfg.to_file_values().items()]

    # Write to a sibling temp file first so a failed write never truncates the old config
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write("\n".join(lines) + "\n")
        os.replace(tmp, path)
    except OSError:
        Path(tmp).unlink(missing_ok=True)
        raise
    os.chmod(path, 0o600)
    return path


if __name__ == "__main__":
    """Quick validation — run: python3 config_loader.py"""
    try:
        cfg = load_config()
        if cfg is None:
            print(f"No configuration at {CONFIG_FILE}. Run: python3 wizard.py")
            sys.exit(1)
        cfg.require_deployable()
        print("Configuration loaded successfully")
        print(f"   Project:   {cfg.project_name}")
        print(f"   Directory: {cfg.project_dir}")
        print(f"   Server:    {cfg.server_kind}")
        print(f"   Database:  {cfg.db_name} (user {cfg.db_user})")
        print(f"   Domain:    {cfg.domain_name or '(none)'}")
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)
