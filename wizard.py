#!/usr/bin/env python3
"""
Django Deploy Kit — Interactive Configuration Wizard
====================================================
Guides you through all deployment parameters and writes .django_deploy.conf.

Prompts go through a Prompter, so the same question sequence can be rendered
in a plain terminal (default) or with whiptail dialogs (--ui whiptail).

Usage:
  python3 wizard.py                     # Run wizard, optionally save
  python3 wizard.py --ui whiptail       # Same questions as whiptail dialogs
  python3 deploy_manager.py             # Wizard runs from the main menu
"""
import argparse
import getpass
import re
import secrets
import subprocess
import sys
from typing import Any

from config_loader import (
    CONFIG_FILE,
    SECRET_FIELDS,
    DeploymentConfig,
    load_config,
    save_config,
)
from console import BOLD, CYAN, DIM, RESET, bold, dim, green, red, yellow

# ── Option tables ──────────────────────────────────────────────
SERVER_TYPES = [
    ("gunicorn", "Gunicorn + Nginx          (recommended default)"),
    ("uwsgi",    "uWSGI + Nginx"),
    ("asgi",     "Daphne + Nginx (ASGI)     — channels / async views"),
]


class PromptCancelled(KeyboardInterrupt):
    """The operator cancelled a dialog."""


# ════════════════════════════════════════════════════════════════
#  PROMPTERS
# ════════════════════════════════════════════════════════════════
class Prompter:
    """Question-asking capability used by the wizard and the pipeline."""

    def ask_text(self, q: str, default: str = "", required: bool = False) -> str:
        raise NotImplementedError

    def ask_secret(self, q: str, required: bool = False) -> str:
        raise NotImplementedError

    def ask_yes_no(self, q: str, default: bool = True) -> bool:
        raise NotImplementedError

    def ask_choice(self, q: str, options: list[tuple[str, str]], default: int = 0) -> str:
        raise NotImplementedError

    def show(self, title: str, text: str) -> None:
        raise NotImplementedError


class TerminalPrompter(Prompter):
    """Plain stdin/stdout prompts; secrets are read with getpass (never echoed)."""

    def ask_text(self, q, default="", required=False):
        sfx = f" [{dim(default)}]" if default else ""
        while True:
            v = input(f"  {q}{sfx}: ").strip()
            if not v:
                if default: return default
                if required: print(f"  {red('Required.')}"); continue
            return v or default

    def ask_secret(self, q, required=False):
        while True:
            v = getpass.getpass(f"  {q}: ")
            if v or not required:
                return v
            print(f"  {red('Required.')}")

    def ask_yes_no(self, q, default=True):
        sfx = "Y/n" if default else "y/N"
        raw = input(f"  {q} [{dim(sfx)}]: ").strip().lower()
        if not raw: return default
        return raw in ("y", "yes", "1", "true")

    def ask_choice(self, q, options, default=0):
        print(f"\n  {bold(q)}")
        for i, (v, d) in enumerate(options, 1):
            marker = green("->") if i == default + 1 else "  "
            print(f"    {marker} {bold(str(i))}. {bold(v):<16} {dim(d)}")
        while True:
            raw = input(f"  Choice [{dim(str(default + 1))}]: ").strip()
            if not raw: return options[default][0]
            try:
                idx = int(raw) - 1
                if 0 <= idx < len(options): return options[idx][0]
            except ValueError:
                pass
            print(f"  {red(f'Enter 1-{len(options)}.')}")

    def show(self, title, text):
        hdr(title)
        print(text)


class WhiptailPrompter(Prompter):
    """Renders every question as a whiptail dialog (requires the whiptail binary)."""

    HEIGHT, WIDTH = 10, 60

    def _dialog(self, *args: str) -> subprocess.CompletedProcess:
        # whiptail draws on the terminal and writes the answer to stderr
        return subprocess.run(["whiptail", *args], stderr=subprocess.PIPE, text=True)

    def _answer(self, *args: str) -> str:
        r = self._dialog(*args)
        if r.returncode != 0:
            raise PromptCancelled()
        return r.stderr.strip()

    def ask_text(self, q, default="", required=False):
        while True:
            v = self._answer("--inputbox", q, str(self.HEIGHT), str(self.WIDTH), default) or default
            if v or not required:
                return v

    def ask_secret(self, q, required=False):
        while True:
            v = self._answer("--passwordbox", q, str(self.HEIGHT), str(self.WIDTH))
            if v or not required:
                return v

    def ask_yes_no(self, q, default=True):
        args = ["--yesno", q, str(self.HEIGHT), str(self.WIDTH)]
        if not default:
            args.insert(0, "--defaultno")
        r = self._dialog(*args)
        if r.returncode == 255:
            raise PromptCancelled()
        return r.returncode == 0

    def ask_choice(self, q, options, default=0):
        items = [s for v, d in options for s in (v, d)]
        return self._answer(
            "--default-item", options[default][0],
            "--menu", q, "20", "70", str(min(len(options), 10)), *items,
        )

    def show(self, title, text):
        self._dialog("--title", title, "--scrolltext", "--msgbox", text, "24", "78")


def make_prompter(ui: str) -> Prompter:
    return WhiptailPrompter() if ui == "whiptail" else TerminalPrompter()


# ── UI helpers ────────────────────────────────────────────────
def hdr(title: str):
    print(f"\n{CYAN}{'='*62}{RESET}")
    print(f"{CYAN}  {BOLD}{title}{RESET}")
    print(f"{CYAN}{'='*62}{RESET}")

def sec(num: int, total: int, title: str):
    print(f"\n{BOLD}{CYAN}[{num}/{total}] {title}{RESET}")
    print(f"{DIM}{'-'*50}{RESET}")


def suggest_identifier(name: str) -> str:
    """Turn an arbitrary project name into a valid Python module name."""
    ident = re.sub(r"_+", "_", re.sub(r"\W", "_", name.strip())).strip("_") or "project"
    return f"_{ident}" if ident[0].isdigit() else ident


# ════════════════════════════════════════════════════════════════
#  WIZARD — 6-step interactive configuration
# ════════════════════════════════════════════════════════════════
def run_wizard(p: Prompter, existing: DeploymentConfig | None = None) -> DeploymentConfig:
    """Run the question sequence. Returns a validated DeploymentConfig."""
    ex = existing or DeploymentConfig()

    hdr("DJANGO DEPLOY KIT — CONFIGURATION WIZARD")
    print(f"  {dim('Press Enter to accept the default shown in [brackets].')}")
    print(f"  {dim('Ctrl+C at any time to abort without saving.')}")

    cfg: dict[str, Any] = {}
    TOTAL = 6

    # ── [1/6] Project Identity ────────────────────────────────
    sec(1, TOTAL, "PROJECT IDENTITY")
    while True:
        name = p.ask_text("Enter project name", ex.project_name or "my_django_project", required=True)
        ident = suggest_identifier(name)
        if name == ident:
            break
        print(f"  {yellow(f'Project name must be a Python module name. Try: {ident}')}")
    cfg["project_name"] = name
    cfg["project_dir"] = p.ask_text("Enter project directory", ex.project_dir or f"/opt/{name}", required=True)
    cfg["venv_dir"]    = p.ask_text("Enter virtual environment directory",
                                    ex.venv_dir or f"{cfg['project_dir']}/venv", required=True)
    cfg["app_user"]    = p.ask_text("Enter application user", ex.app_user or "django", required=True)

    # ── [2/6] Database ────────────────────────────────────────
    sec(2, TOTAL, "DATABASE (PostgreSQL)")
    cfg["db_name"] = p.ask_text("Enter database name", ex.db_name or f"{name}_db", required=True)
    cfg["db_user"] = p.ask_text("Enter database user", ex.db_user or f"{name}_user", required=True)
    if ex.db_pass:
        cfg["db_pass"] = p.ask_secret("Enter database password (Enter keeps current)") or ex.db_pass
    else:
        cfg["db_pass"] = p.ask_secret("Enter database password", required=True)

    # ── [3/6] Django Settings ─────────────────────────────────
    sec(3, TOTAL, "DJANGO SETTINGS")
    cfg["django_secret_key"] = ex.django_secret_key or secrets.token_urlsafe(50)
    cfg["django_debug"]      = ex.django_debug
    cfg["allowed_hosts"] = p.ask_text("Enter allowed hosts (comma-separated)",
                                      ex.allowed_hosts or "localhost,127.0.0.1")
    cfg["domain_name"]   = p.ask_text("Enter domain name (if any)", ex.domain_name)
    cfg["server_ip"]     = p.ask_text("Enter server IP (if any)", ex.server_ip)
    if not cfg["domain_name"]:
        print(f"  {yellow('No domain: SSL setup will be skipped.')}")

    # ── [4/6] Deployment Options ──────────────────────────────
    sec(4, TOTAL, "DEPLOYMENT OPTIONS")
    def_idx = next((i for i, (v, _) in enumerate(SERVER_TYPES) if v == ex.deployment_type), 0)
    cfg["deployment_type"] = p.ask_choice("Select deployment type:", SERVER_TYPES, def_idx)
    cfg["use_celery"] = p.ask_yes_no("Use Celery for background tasks?", ex.use_celery)
    cfg["use_docker"] = p.ask_yes_no("Use Docker for deployment?", ex.use_docker)

    # ── [5/6] Repository ──────────────────────────────────────
    sec(5, TOTAL, "GIT REPOSITORY")
    cfg["git_repo"]   = p.ask_text("Enter Git repository URL", ex.git_repo)
    cfg["git_branch"] = p.ask_text("Enter Git branch", ex.git_branch or "main")

    # ── [6/6] Email ───────────────────────────────────────────
    sec(6, TOTAL, "EMAIL")
    if p.ask_yes_no("Configure email settings?", bool(ex.email_host)):
        cfg["email_host"] = p.ask_text("Enter email host", ex.email_host or "smtp.gmail.com")
        cfg["email_port"] = p.ask_text("Enter email port", ex.email_port or "587")
        cfg["email_user"] = p.ask_text("Enter email user", ex.email_user)
        cfg["email_pass"] = p.ask_secret("Enter email password") or ex.email_pass
    else:
        cfg.update(email_host="", email_port="587", email_user="", email_pass="")
        print(f"  {yellow('Email not configured.')}")

    return DeploymentConfig.from_mapping(cfg)


# ════════════════════════════════════════════════════════════════
#  SUMMARY + SAVE + MAIN
# ════════════════════════════════════════════════════════════════
def mask(value: str) -> str:
    return "****" if value else "(not set)"


def summary_text(cfg: DeploymentConfig) -> str:
    W = 20
    rows = []
    for key, value in cfg.to_file_values().items():
        if key.lower() in SECRET_FIELDS:
            value = mask(value)
        rows.append(f"  {key.ljust(W)} {value}")
    return "\n".join(rows)


def print_summary(cfg: DeploymentConfig):
    """Print the configuration with secrets masked."""
    hdr("CONFIGURATION SUMMARY — PLEASE REVIEW")
    print(summary_text(cfg))
    print()
    print(f"  {yellow(bold('WARNING: Deploying will create a system user, a database and system services.'))}")


def configure(p: Prompter, existing: DeploymentConfig | None = None, config_path=CONFIG_FILE) -> DeploymentConfig:
    """Run the wizard, show the summary and offer to save. Returns the config either way."""
    cfg = run_wizard(p, existing)
    print_summary(cfg)
    if p.ask_yes_no("Save this configuration?", True):
        path = save_config(cfg, config_path)
        print(f"\n  {green('Configuration saved to:')} {bold(str(path))}")
    else:
        print(f"\n  {yellow('Configuration NOT saved. It will be used for this run only.')}")
    return cfg


def main():
    """Entry point for standalone wizard run."""
    parser = argparse.ArgumentParser(description="Django Deploy Kit configuration wizard")
    parser.add_argument("--ui", choices=["terminal", "whiptail"], default="terminal")
    parser.add_argument("--config", default=str(CONFIG_FILE), help="Configuration file path")
    args = parser.parse_args()
    try:
        existing = load_config(args.config)
        configure(make_prompter(args.ui), existing, args.config)
    except ValueError as e:
        print(f"\n  {red(f'Configuration error: {e}')}")
        sys.exit(1)
    except KeyboardInterrupt:
        print(f"\n\n  {yellow('Wizard aborted. No changes made.')}")
        sys.exit(0)


if __name__ == "__main__":
    main()
