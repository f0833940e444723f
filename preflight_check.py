#!/usr/bin/env python3
"""Pre-flight check — verify required tools are installed before touching the host."""
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Callable

from console import fail, log, ok, warn

MIN_PYTHON = (3, 8)

# executable -> what it is needed for
REQUIRED_TOOLS = {
    "python3":   "Python 3.8+",
    "pip3":      "Python pip",
    "git":       "Git",
    "nginx":     "Nginx web server",
    "systemctl": "systemd service control",
    "psql":      "PostgreSQL client",
}
WHIPTAIL = {"whiptail": "Whiptail for TUI"}


@dataclass
class PreflightResult:
    missing: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.errors


def python_version(exe: str = "python3") -> tuple[int, int] | None:
    """Return (major, minor) of the interpreter on PATH, or None if it cannot run."""
    try:
        r = subprocess.run(
            [exe, "-c", "import sys; print(f'{sys.version_info.major}.{sys.version_info.minor}')"],
            capture_output=True, text=True,
        )
    except OSError:
        return None
    m = re.match(r"(\d+)\.(\d+)", r.stdout.strip())
    return (int(m.group(1)), int(m.group(2))) if r.returncode == 0 and m else None


def check_prerequisites(
    ui: str = "terminal",
    which: Callable[[str], str | None] = shutil.which,
    version: Callable[[], tuple[int, int] | None] = python_version,
) -> PreflightResult:
    """Check every required tool, collecting all problems before reporting."""
    result = PreflightResult()
    tools = dict(REQUIRED_TOOLS)
    if ui == "whiptail":
        tools.update(WHIPTAIL)

    log("Checking prerequisites...")
    for tool, desc in tools.items():
        if not which(tool):
            result.missing.append(f"{desc} ({tool})")

    # Only meaningful when the interpreter itself is present
    if which("python3"):
        found = version()
        if found is None:
            result.errors.append("Could not determine the python3 version")
        elif found < MIN_PYTHON:
            result.errors.append(
                f"Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ required, found {found[0]}.{found[1]}"
            )

    if not which("certbot"):
        result.warnings.append("certbot not installed — it will be installed during SSL setup")

    return result


def report(result: PreflightResult) -> bool:
    """Print the preflight outcome. Returns result.ok."""
    for w in result.warnings:
        warn(w)
    if result.missing:
        fail("Missing required tools:")
        for m in result.missing:
            fail(f"  - {m}")
    for e in result.errors:
        fail(e)
    if result.ok:
        ok("All prerequisites met")
    else:
        fail("PREFLIGHT FAILED — install the tools above before deploying.")
    return result.ok


if __name__ == "__main__":
    ui = "whiptail" if "--ui=whiptail" in sys.argv else "terminal"
    sys.exit(0 if report(check_prerequisites(ui)) else 1)
