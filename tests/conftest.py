"""Pytest configuration and fixtures for Django Deploy Kit tests.

No test touches the real host: FakeHost records every command and keeps every
"absolute" host path under a temporary directory.
"""

import shutil
from dataclasses import dataclass
from pathlib import Path

import pytest

from config_loader import DeploymentConfig
from host import CommandError, CommandResult, Host
from wizard import Prompter


@dataclass
class Call:
    cmd: list[str]
    user: str | None = None
    input: str | None = None
    env: dict | None = None
    cwd: str | None = None

    @property
    def line(self) -> str:
        return " ".join(self.cmd)


class FakeHost(Host):
    """Host double: scripted command results, files under ``root``.

    Rules are matched newest first on a command prefix (and optionally a
    substring of the stdin input); unmatched commands succeed with no output.
    """

    def __init__(self, root: Path, passthrough: Path | None = None):
        super().__init__(use_sudo=False)
        self.root = root
        self.passthrough = passthrough or root.parent
        self.calls: list[Call] = []
        self.rules: list[tuple[tuple[str, ...], str | None, CommandResult]] = []
        self.tools: set[str] = set()
        self.root.mkdir(parents=True, exist_ok=True)

    # ── scripting ─────────────────────────────────────────────
    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", stderr: str = "",
           input_contains: str | None = None) -> None:
        self.rules.insert(0, (prefix, input_contains, CommandResult(returncode, stdout, stderr)))

    def lines(self) -> list[str]:
        return [c.line for c in self.calls]

    def ran(self, *prefix: str) -> list[Call]:
        return [c for c in self.calls if tuple(c.cmd[:len(prefix)]) == prefix]

    def path(self, p) -> Path:
        """Where host path p lives on the test filesystem."""
        p = Path(p)
        if not p.is_absolute() or p.is_relative_to(self.passthrough):
            return p
        return self.root / str(p).lstrip("/")

    # ── Host interface ────────────────────────────────────────
    def run(self, cmd, user=None, check=True, input=None, env=None, cwd=None):
        cmd = [str(c) for c in cmd]
        self.calls.append(Call(cmd, user, input, env, str(cwd) if cwd else None))
        result = CommandResult(0)
        for prefix, needle, res in self.rules:
            if tuple(cmd[:len(prefix)]) != prefix:
                continue
            if needle is not None and needle not in (input or ""):
                continue
            result = res
            break
        if check and not result.ok:
            raise CommandError(cmd, result.returncode, result.stderr)
        return result

    def which(self, name):
        return f"/usr/bin/{name}" if name in self.tools else None

    def exists(self, path):
        return self.path(path).exists()

    def is_dir(self, path):
        return self.path(path).is_dir()

    def read_text(self, path):
        p = self.path(path)
        return p.read_text() if p.exists() else None

    def write_file(self, path, content, mode=0o644, owner=None):
        self.calls.append(Call(["write", str(path)]))
        p = self.path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content)
        p.chmod(mode)

    def copy(self, src, dst):
        self.calls.append(Call(["cp", str(src), str(dst)]))
        shutil.copy(self.path(src), self.path(dst))

    def remove(self, path, recursive=False):
        self.calls.append(Call(["rm", str(path)]))
        p = self.path(path)
        if p.is_dir() and not p.is_symlink():
            shutil.rmtree(p)
        else:
            p.unlink(missing_ok=True)

    def symlink(self, target, link):
        self.calls.append(Call(["ln", "-sf", str(target), str(link)]))
        lp = self.path(link)
        lp.parent.mkdir(parents=True, exist_ok=True)
        if lp.is_symlink() or lp.exists():
            lp.unlink()
        lp.symlink_to(self.path(target))


class ScriptedPrompter(Prompter):
    """Answers questions from a list; None means "accept the default"."""

    def __init__(self, answers=None):
        self.answers = list(answers or [])
        self.asked: list[tuple[str, str]] = []
        self.shown: list[tuple[str, str]] = []

    def _next(self, kind, q):
        self.asked.append((kind, q))
        if not self.answers:
            raise AssertionError(f"Unexpected question: {q}")
        return self.answers.pop(0)

    def ask_text(self, q, default="", required=False):
        a = self._next("text", q)
        return default if a is None else a

    def ask_secret(self, q, required=False):
        a = self._next("secret", q)
        return "" if a is None else a

    def ask_yes_no(self, q, default=True):
        a = self._next("yes_no", q)
        return default if a is None else a

    def ask_choice(self, q, options, default=0):
        a = self._next("choice", q)
        return options[default][0] if a is None else a

    def show(self, title, text):
        self.shown.append((title, text))


@pytest.fixture
def fake_host(tmp_path):
    return FakeHost(tmp_path / "host")


@pytest.fixture
def shop_config():
    """The `shop` project: domain set, Celery off."""
    return DeploymentConfig.from_mapping({
        "project_name": "shop",
        "project_dir": "/opt/shop",
        "venv_dir": "/opt/shop/venv",
        "app_user": "django",
        "db_name": "shop_db",
        "db_user": "shop_user",
        "db_pass": "p@ss'word",
        "django_secret_key": "k" * 50,
        "allowed_hosts": "shop.example.com",
        "domain_name": "shop.example.com",
        "server_ip": "203.0.113.10",
        "deployment_type": "gunicorn",
    })


@pytest.fixture(autouse=True)
def no_pacing(monkeypatch):
    monkeypatch.setenv("DEPLOYKIT_PACING", "0")
    monkeypatch.setenv("NO_COLOR", "1")


@pytest.fixture(autouse=True)
def detach_log_files():
    """Drop file handlers a test attached to the deploykit logger."""
    from console import logger
    before = list(logger.handlers)
    yield
    for handler in logger.handlers[len(before):]:
        logger.removeHandler(handler)
        handler.close()
