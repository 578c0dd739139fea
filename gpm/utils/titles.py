"""Pull request title generation."""

import re

BRANCH_PREFIX = re.compile(r"^(feature|feat|fix|bug|hotfix|chore|docs|refactor)/")


def generate_pr_title(branch_name: str) -> str:
    """Derive a human title from a branch name.

    Strips a conventional prefix, turns dashes and underscores into spaces and
    capitalizes the first letter: "feature/add-login" -> "Add login".
    """
    title = BRANCH_PREFIX.sub("", branch_name)
    title = re.sub(r"[-_]", " ", title).strip()
    if not title:
        return branch_name
    return title[0].upper() + title[1:]
