"""Project context detection and path resolution."""

from pathlib import Path
from typing import Optional

PR_TEMPLATE_LOCATIONS = (
    ".github/PULL_REQUEST_TEMPLATE.md",
    ".github/pull_request_template.md",
    "docs/PULL_REQUEST_TEMPLATE.md",
    "PULL_REQUEST_TEMPLATE.md",
    ".github/PULL_REQUEST_TEMPLATE/default.md",
    ".github/PULL_REQUEST_TEMPLATE/main.md",
)


class ProjectContext:
    """Detects project structure and provides path resolution.

    Attributes:
        cwd: Current working directory (invocation location)
        project_root: Project root directory containing .git or .gpm.yml
    """

    def __init__(self, cwd: Optional[Path] = None):
        """Initialize context by detecting the project root from cwd.

        Args:
            cwd: Working directory to start detection from (default: Path.cwd())
        """
        self.cwd = cwd or Path.cwd()
        self.project_root = self._find_project_root()

    def _find_project_root(self) -> Path:
        """Walk up directory tree to find project root containing .git or .gpm.yml.

        Returns:
            Path to project root, or self.cwd if no markers found
        """
        current = self.cwd
        while current != current.parent:
            if (current / ".git").exists() or (current / ".gpm.yml").is_file():
                return current
            current = current.parent
        return self.cwd

    def resolve_path(self, path: str) -> Path:
        """Convert user-provided path to absolute path relative to invocation directory.

        Args:
            path: User-provided path (absolute or relative)

        Returns:
            Absolute resolved path
        """
        resolved = Path(path)

        if resolved.is_absolute():
            return resolved

        # Relative to invocation directory
        return (self.cwd / resolved).resolve()

    def find_pr_template(self, configured: Optional[str] = None) -> Optional[Path]:
        """Locate a pull request template.

        A configured path (relative to the project root) wins over the standard
        GitHub locations.

        Returns:
            Path to the template, or None if none exists
        """
        candidates = []
        if configured:
            path = Path(configured)
            candidates.append(path if path.is_absolute() else self.project_root / path)
        candidates.extend(self.project_root / location for location in PR_TEMPLATE_LOCATIONS)

        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None
