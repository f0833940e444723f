#!/usr/bin/env python3
"""
Django Deploy Kit — Deployment Manager
======================================
Single entry point for deploying and operating one Django project on one host.

Menu:
  1 Full Deployment Wizard     configure, then deploy
  2 Configure Settings Only    configure and save
  3 Update Deployment          backup, then deploy
  4 Backup Project
  5 Rollback Deployment        select a backup; manual restore runbook
  6 Monitor Services
  7 View Logs
  8 Restart Services
  9 Uninstall
  0 Exit

Usage:
  django-deploy                      # interactive menu
  django-deploy --deploy             # deploy with the saved configuration
  django-deploy --backup | --restore | --monitor
  django-deploy --ui whiptail        # dialogs instead of terminal prompts

Run as a regular user with sudo rights; running as root is refused.
"""
import argparse
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from backup import BACKUP_ROOT, backup_project, restore
from config_loader import CONFIG_FILE, DeploymentConfig, load_config
from console import fail, log, ok, setup_logging, warn
from deploy_pipeline import OUTPUTS_DIR, PipelineError, StepError, deploy
from host import CommandError, Host
from monitor import LOG_DIR, monitoring_report, restart_services, view_logs
from service_generator import ValidationError
from teardown import uninstall
from wizard import PromptCancelled, Prompter, configure, make_prompter

MENU = [
    ("1", "Full Deployment Wizard"),
    ("2", "Configure Settings Only"),
    ("3", "Update Deployment"),
    ("4", "Backup Project"),
    ("5", "Rollback Deployment"),
    ("6", "Monitor Services"),
    ("7", "View Logs"),
    ("8", "Restart Services"),
    ("9", "Uninstall"),
    ("0", "Exit"),
]

# Failures an action reports without leaving the menu
ACTION_ERRORS = (CommandError, StepError, PipelineError, ValidationError, ValueError)

USAGE = """Usage: django-deploy [OPTIONS]

Options:
  --deploy       Run deployment with the saved configuration
  --backup       Create backup
  --restore      Restore from backup
  --monitor      Show monitoring report
  --ui MODE      terminal (default) or whiptail
  --config PATH  Configuration file (default .django_deploy.conf)
  --help, -h     Show this help
"""


@dataclass
class Session:
    prompter: Prompter
    host: Host
    config_path: Path = CONFIG_FILE
    ui: str = "terminal"
    cfg: DeploymentConfig | None = None
    backup_root: Path = BACKUP_ROOT
    outputs_root: Path = OUTPUTS_DIR
    log_dir: Path = LOG_DIR
    pacing: float | None = None
    history: list[str] = field(default_factory=list)

    def config(self) -> DeploymentConfig:
        """The active configuration, running the wizard when there is none."""
        if self.cfg is None:
            self.cfg = configure(self.prompter, None, self.config_path)
        return self.cfg


# ═══════════════════════════════════════════════════════════════════════════════
#  ACTIONS
# ═══════════════════════════════════════════════════════════════════════════════
def action_deploy(s: Session) -> None:
    deploy(s.config(), s.host, s.prompter, ui=s.ui, outputs_root=s.outputs_root, pacing=s.pacing)


def action_full(s: Session) -> None:
    s.cfg = configure(s.prompter, s.cfg, s.config_path)
    action_deploy(s)


def action_configure(s: Session) -> None:
    s.cfg = configure(s.prompter, s.cfg, s.config_path)


def action_update(s: Session) -> None:
    backup_project(s.host, s.config(), s.backup_root)
    action_deploy(s)


def action_backup(s: Session) -> None:
    backup_project(s.host, s.config(), s.backup_root)


def action_restore(s: Session) -> None:
    restore(s.prompter, s.backup_root)


def action_monitor(s: Session) -> None:
    s.prompter.show("Monitoring Report", monitoring_report(s.host, s.config()))


def action_logs(s: Session) -> None:
    s.prompter.show("Logs", view_logs(s.host, s.config(), s.log_dir))


def action_restart(s: Session) -> None:
    units = restart_services(s.host, s.config())
    s.prompter.show("Restart Services", "Services restarted successfully:\n  " + "\n  ".join(units))


def action_uninstall(s: Session) -> None:
    uninstall(s.host, s.config(), s.prompter, outputs_dir=s.outputs_root)


ACTIONS = {
    "1": action_full,
    "2": action_configure,
    "3": action_update,
    "4": action_backup,
    "5": action_restore,
    "6": action_monitor,
    "7": action_logs,
    "8": action_restart,
    "9": action_uninstall,
}


def menu_loop(s: Session) -> int:
    while True:
        try:
            choice = s.prompter.ask_choice("Django Deployment Manager", MENU)
        except PromptCancelled:
            choice = "0"
        if choice in ("0", ""):
            log("Exiting...")
            return 0
        s.history.append(choice)
        try:
            ACTIONS[choice](s)
        except ACTION_ERRORS as e:
            fail(str(e))


def interactive(s: Session) -> int:
    existing = load_config(s.config_path)
    if existing is not None and s.prompter.ask_yes_no("Configuration found. Use existing settings?", True):
        s.cfg = existing
    else:
        s.cfg = configure(s.prompter, existing, s.config_path)
    return menu_loop(s)


# ═══════════════════════════════════════════════════════════════════════════════
#  CLI
# ═══════════════════════════════════════════════════════════════════════════════
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="django-deploy", add_help=False)
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--deploy",  action="store_true")
    mode.add_argument("--backup",  action="store_true")
    mode.add_argument("--restore", action="store_true")
    mode.add_argument("--monitor", action="store_true")
    mode.add_argument("-h", "--help", action="store_true")
    parser.add_argument("--ui", choices=["terminal", "whiptail"], default="terminal")
    parser.add_argument("--config", default=str(CONFIG_FILE))
    return parser


def run(argv: list[str], prompter: Prompter | None = None, host: Host | None = None,
        **session_kw) -> int:
    """Dispatch one invocation; returns the exit code."""
    args, unknown = build_parser().parse_known_args(argv)
    if args.help:
        print(USAGE)
        return 0
    if os.geteuid() == 0:
        fail("This tool should not be run as root — use a sudo-capable user")
        return 1
    if unknown:
        warn(f"Ignoring unrecognized arguments: {' '.join(unknown)}")

    s = Session(
        prompter=prompter or make_prompter(args.ui),
        host=host or Host(),
        config_path=Path(args.config),
        ui=args.ui,
        **session_kw,
    )
    try:
        setup_logging(s.log_dir)
    except OSError as e:
        warn(f"No deployment log file: {e}")

    try:
        s.cfg = load_config(s.config_path)
        if s.cfg is None and (args.deploy or args.backup or args.monitor):
            fail(f"No configuration at {s.config_path}. Run: django-deploy (menu option 2)")
            return 1
        if args.deploy:
            action_deploy(s)
            ok("Deployment finished")
            return 0
        if args.backup:
            action_backup(s)
            return 0
        if args.restore:
            action_restore(s)
            return 0
        if args.monitor:
            print(monitoring_report(s.host, s.config()))
            return 0
        return interactive(s)
    except ACTION_ERRORS as e:
        fail(str(e))
        return 1
    except KeyboardInterrupt:
        warn("Interrupted — host left in its current state")
        return 130


def main() -> None:
    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
