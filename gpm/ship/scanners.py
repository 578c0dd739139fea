"""Local verification and security scanning.

Both scanners follow the same contract: ``run()`` returns a ``ScanResult``.
A missing script or tool is not a failure; it yields a skipped result so the
orchestrator can record a skipped step with the reason.

How to add a scanner:
---------------------
1. Implement ``run(self) -> ScanResult``
2. Return ``ScanResult(ok=False, blockers=[...])`` for problems that must stop
   the ship workflow, and put non-blocking findings in ``warnings``
3. Return ``ScanResult.skip(reason)`` when the tool is unavailable
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

NO_VERIFICATION_SCRIPT = "no verification script"
NO_SECURITY_TOOLS = "no security tools available"

VERIFY_TIMEOUT = 300.0
SCAN_TIMEOUT = 120.0
MAX_ERROR_LINES = 10


class ScannerError(Exception):
    """Exception raised when a scanner command cannot be executed at all."""

    pass


@dataclass(frozen=True)
class ScanResult:
    """Result of a verification run or security scan."""

    ok: bool
    output: str = ""
    blockers: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    skipped: bool = False
    reason: Optional[str] = None
    command: Optional[str] = None

    @classmethod
    def skip(cls, reason: str) -> ScanResult:
        return cls(ok=True, skipped=True, reason=reason)


class Scanner(Protocol):
    """Interface shared by the verification runner and the security scanner."""

    def skip_reason(self) -> Optional[str]:
        """Return why the scan cannot run here, or None if it can."""
        ...

    def run(self) -> ScanResult:
        ...


class DisabledScanner:
    """Stands in for a scanner turned off in configuration."""

    def __init__(self, reason: str):
        self.reason = reason

    def skip_reason(self) -> Optional[str]:
        return self.reason

    def run(self) -> ScanResult:
        return ScanResult.skip(self.reason)


class VerificationRunner:
    """Discovers and runs the project's local verification command.

    Discovery order: explicit ``verify.command`` from config, ``verify.sh``,
    package.json scripts (verify, precommit, pre-commit, test+lint, test),
    ``tox.ini``, then Makefile ``verify:``/``test:`` targets.
    """

    def __init__(
        self,
        project_root: Path,
        command: Optional[str] = None,
        timeout: float = VERIFY_TIMEOUT,
    ):
        self.project_root = project_root
        self.command = command
        self.timeout = timeout

    def discover(self) -> Optional[str]:
        """Return the shell command to run, or None if nothing is configured."""
        if self.command:
            return self.command

        if (self.project_root / "verify.sh").is_file():
            return "bash verify.sh"

        package_json = self.project_root / "package.json"
        if package_json.is_file():
            try:
                scripts = json.loads(package_json.read_text()).get("scripts") or {}
            except (ValueError, OSError) as e:
                logger.warning(f"Ignoring unreadable package.json: {e}")
                scripts = {}
            for name in ("verify", "precommit", "pre-commit"):
                if name in scripts:
                    return f"npm run {name}"
            if "test" in scripts and "lint" in scripts:
                return "npm test && npm run lint"
            if "test" in scripts:
                return "npm test"

        if (self.project_root / "tox.ini").is_file():
            return "tox"

        makefile = self.project_root / "Makefile"
        if makefile.is_file():
            content = makefile.read_text()
            if "verify:" in content:
                return "make verify"
            if "test:" in content:
                return "make test"

        return None

    def skip_reason(self) -> Optional[str]:
        return NO_VERIFICATION_SCRIPT if self.discover() is None else None

    def run(self) -> ScanResult:
        """Run the discovered verification command.

        Raises:
            ScannerError: If the shell cannot be started
        """
        command = self.discover()
        if command is None:
            logger.info("No verification script found")
            return ScanResult.skip(NO_VERIFICATION_SCRIPT)

        logger.info(f"Running verification: {command}")
        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=self.project_root,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return ScanResult(
                ok=False,
                blockers=(f"Verification timed out after {self.timeout:g} seconds",),
                command=command,
            )
        except OSError as e:
            raise ScannerError(f"Failed to run verification command '{command}': {e}") from e

        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode == 0:
            return ScanResult(ok=True, output=output, command=command)

        return ScanResult(
            ok=False,
            output=output,
            blockers=tuple(_error_lines(output, result.returncode, command)),
            command=command,
        )


def _error_lines(output: str, returncode: int, command: str) -> list[str]:
    lines = [
        line.strip()
        for line in output.splitlines()
        if "error" in line.lower() or "failed" in line.lower()
    ]
    if not lines:
        return [f"'{command}' failed with exit code {returncode}"]
    return lines[:MAX_ERROR_LINES]


def _plural(count: int, noun: str) -> str:
    if count == 1:
        return f"{count} {noun}y"
    return f"{count} {noun}ies"


class SecurityScanner:
    """Scans for committed secrets and vulnerable dependencies.

    Secrets are found with ``detect-secrets``; dependencies are audited with
    ``pip-audit`` for Python projects and ``npm audit`` for Node projects.
    Secrets and critical vulnerabilities are blockers; high-severity
    vulnerabilities (and every pip-audit finding, which carries no severity)
    are warnings.
    """

    def __init__(
        self,
        project_root: Path,
        which: Callable[[str], Optional[str]] = shutil.which,
        timeout: float = SCAN_TIMEOUT,
    ):
        self.project_root = project_root
        self._which = which
        self.timeout = timeout

    def detect_language(self) -> Optional[str]:
        root = self.project_root
        if any((root / name).is_file() for name in ("requirements.txt", "setup.py", "pyproject.toml")):
            return "python"
        if (root / "package.json").is_file():
            return "node"
        return None

    def available_tools(self) -> list[str]:
        """Return the installed tools relevant to this project."""
        tools = []
        if self._which("detect-secrets"):
            tools.append("detect-secrets")
        language = self.detect_language()
        if language == "python" and self._which("pip-audit"):
            tools.append("pip-audit")
        if language == "node" and self._which("npm"):
            tools.append("npm")
        return tools

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                args,
                cwd=self.project_root,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ScannerError(f"{args[0]} timed out after {self.timeout:g} seconds") from e
        except OSError as e:
            raise ScannerError(f"Failed to run {args[0]}: {e}") from e

    def skip_reason(self) -> Optional[str]:
        return None if self.available_tools() else NO_SECURITY_TOOLS

    def run(self) -> ScanResult:
        tools = self.available_tools()
        if not tools:
            logger.info("No security tools installed")
            return ScanResult.skip(NO_SECURITY_TOOLS)

        blockers: list[str] = []
        warnings: list[str] = []

        if "detect-secrets" in tools:
            self._scan_secrets(blockers, warnings)
        else:
            warnings.append("Secret scanning skipped: detect-secrets not installed")

        if "pip-audit" in tools:
            self._audit_python(blockers, warnings)
        elif "npm" in tools:
            self._audit_node(blockers, warnings)
        else:
            warnings.append("Vulnerability scanning skipped: no audit tool for this project")

        return ScanResult(
            ok=not blockers,
            blockers=tuple(blockers),
            warnings=tuple(warnings),
            command=", ".join(tools),
        )

    def _scan_secrets(self, blockers: list[str], warnings: list[str]) -> None:
        try:
            result = self._run(["detect-secrets", "scan"])
            findings = json.loads(result.stdout).get("results") or {}
        except (ScannerError, ValueError) as e:
            warnings.append(f"Secret scanning skipped: {e}")
            return

        count = sum(len(items) for items in findings.values())
        if count:
            files = ", ".join(sorted(findings))
            blockers.append(f"Found {count} potential secret(s) in {files}")

    def _audit_python(self, blockers: list[str], warnings: list[str]) -> None:
        # pip-audit exits non-zero when it finds vulnerabilities; the JSON is still valid.
        try:
            result = self._run(["pip-audit", "--format", "json"])
            data = _load_json(result.stdout)
        except (ScannerError, ValueError) as e:
            warnings.append(f"Vulnerability scanning skipped: {e}")
            return

        vulnerable = [dep for dep in data.get("dependencies", []) if dep.get("vulns")]
        count = sum(len(dep["vulns"]) for dep in vulnerable)
        if count:
            names = ", ".join(dep.get("name", "unknown") for dep in vulnerable)
            warnings.append(f"Found {_plural(count, 'vulnerabilit')} in {names}")

    def _audit_node(self, blockers: list[str], warnings: list[str]) -> None:
        try:
            result = self._run(["npm", "audit", "--json"])
            data = _load_json(result.stdout)
        except (ScannerError, ValueError) as e:
            warnings.append(f"Vulnerability scanning skipped: {e}")
            return

        severities = [
            (vuln.get("severity") or "").lower()
            for vuln in (data.get("vulnerabilities") or {}).values()
        ]
        critical = severities.count("critical")
        high = severities.count("high")
        if critical:
            blockers.append(f"Found {_plural(critical, 'critical vulnerabilit')}")
        if high:
            warnings.append(f"Found {_plural(high, 'high severity vulnerabilit')}")


def _load_json(text: str) -> dict[str, Any]:
    data = json.loads(text or "{}")
    if not isinstance(data, dict):
        raise ValueError("unexpected audit output")
    return data
