#!/usr/bin/env python3
"""
Host Command Runner — Django Deploy Kit
=======================================
The single seam through which the kit touches the target host.

Commands are always passed as Python lists (never shell strings), escalated
with ``sudo`` per command, and captured. Privileged file writes go through a
temporary file and ``install`` so ownership and mode are applied in one step.

Usage:
  host = Host()
  host.run(["systemctl", "daemon-reload"])
  host.run(["psql", "-c", "SELECT 1"], user="postgres")
  host.write_file(Path("/etc/nginx/sites-available/shop"), text, mode=0o644)
"""
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from console import debug, log


class CommandError(RuntimeError):
    """An external command exited non-zero."""

    def __init__(self, cmd: list[str], returncode: int, stderr: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()[:200]}" if stderr.strip() else ""
        super().__init__(f"'{' '.join(cmd)}' exited with {returncode}{detail}")


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class Host:
    """Runs commands and file operations on the local host.

    Args:
        use_sudo: Prefix privileged commands with sudo (default True)
        dry_run:  Log commands instead of running them
    """

    def __init__(self, use_sudo: bool = True, dry_run: bool = False):
        self.use_sudo = use_sudo
        self.dry_run = dry_run

    # ── Commands ──────────────────────────────────────────────
    def _wrap(self, cmd: list[str], user: str | None, keep_env: list[str] | None = None) -> list[str]:
        if not self.use_sudo:
            return list(cmd)
        prefix = ["sudo"]
        # Names only; values travel in the process environment
        if keep_env:
            prefix.append(f"--preserve-env={','.join(keep_env)}")
        if user:
            prefix += ["-u", user]
        return prefix + list(cmd)

    def run(
        self,
        cmd: list[str],
        user: str | None = None,
        check: bool = True,
        input: str | None = None,
        env: dict[str, str] | None = None,
        cwd: Path | str | None = None,
    ) -> CommandResult:
        """Run a command, return a CommandResult; raise CommandError if check and it fails.

        ``env`` values are handed to the child through its environment, never
        through argv, so secrets stay out of ``ps`` output and the log.
        """
        full = self._wrap(cmd, user, keep_env=sorted(env) if env else None)
        shown = " ".join(full)
        if env:
            shown = " ".join(f"{k}=***" for k in sorted(env)) + " " + shown
        debug(f"$ {shown}")
        if self.dry_run:
            log(f"DRY RUN: {shown}")
            return CommandResult(0)
        try:
            r = subprocess.run(
                full, input=input, capture_output=True, text=True,
                env={**os.environ, **env} if env else None,
                cwd=str(cwd) if cwd else None,
            )
        except FileNotFoundError as e:
            r = subprocess.CompletedProcess(full, 127, "", str(e))
        result = CommandResult(r.returncode, r.stdout or "", r.stderr or "")
        if check and not result.ok:
            raise CommandError(list(cmd), result.returncode, result.stderr)
        return result

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    # ── Files ─────────────────────────────────────────────────
    def exists(self, path: Path) -> bool:
        if self.use_sudo:
            return self.run(["test", "-e", str(path)], check=False).ok
        return Path(path).exists()

    def is_dir(self, path: Path) -> bool:
        if self.use_sudo:
            return self.run(["test", "-d", str(path)], check=False).ok
        return Path(path).is_dir()

    def read_text(self, path: Path) -> str | None:
        """Return file content, or None when the file does not exist."""
        if not self.exists(path):
            return None
        if self.use_sudo:
            return self.run(["cat", str(path)]).stdout
        return Path(path).read_text()

    def write_file(self, path: Path, content: str, mode: int = 0o644, owner: str | None = None) -> None:
        """Write content to path with the given mode and owner."""
        if self.dry_run:
            log(f"DRY RUN: write {path} ({len(content)} bytes, mode {mode:o})")
            return
        with tempfile.NamedTemporaryFile("w", suffix=".tmp", delete=False) as f:
            f.write(content)
            tmp = Path(f.name)
        try:
            cmd = ["install", "-m", f"{mode:o}"]
            if owner:
                cmd += ["-o", owner, "-g", owner]
            self.run(cmd + [str(tmp), str(path)])
        finally:
            tmp.unlink(missing_ok=True)

    def copy(self, src: Path, dst: Path) -> None:
        self.run(["cp", str(src), str(dst)])

    def remove(self, path: Path, recursive: bool = False) -> None:
        self.run(["rm", "-rf" if recursive else "-f", str(path)])

    def symlink(self, target: Path, link: Path) -> None:
        self.run(["ln", "-sf", str(target), str(link)])
