"""
git-lab: a git extension for working with GitLab from inside a repository.

Resolves which server, credentials and project a command applies to from
command-line flags, GITLAB_* environment variables and git config, and keeps a
local cache of each attached project's labels, members and milestones.

Environment:
    GITLAB_HOST  - GitLab instance URL
    GITLAB_TOKEN - GitLab Personal Access Token
"""

from git_lab.cli import main

__version__ = "0.1.0"
__all__ = ["main", "__version__"]
