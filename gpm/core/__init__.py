"""Core modules: configuration, project context and logging."""

from gpm.core.config import Config, ConfigError
from gpm.core.context import ProjectContext

__all__ = ["Config", "ConfigError", "ProjectContext"]
