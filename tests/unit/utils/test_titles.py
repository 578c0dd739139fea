"""Unit tests for generate_pr_title."""

import pytest

from gpm.utils import generate_pr_title


@pytest.mark.parametrize(
    "branch,title",
    [
        ("feature/add-login", "Add login"),
        ("fix/null_pointer-crash", "Null pointer crash"),
        ("chore/bump-deps", "Bump deps"),
        ("spike-caching", "Spike caching"),
        ("user/team/thing", "User/team/thing"),
    ],
)
def test_generate_pr_title(branch, title):
    """Should strip conventional prefixes and humanize the rest."""
    assert generate_pr_title(branch) == title


def test_prefix_only_falls_back_to_branch():
    """Should return the branch name when nothing is left after stripping."""
    assert generate_pr_title("feature/") == "feature/"
