"""Utility modules for gpm."""

from gpm.utils.file_extractor import extract_files
from gpm.utils.titles import generate_pr_title

__all__ = [
    "extract_files",
    "generate_pr_title",
]
