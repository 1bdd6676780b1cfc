"""CLI entry point for git-lab."""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any

import requests

# Ensure all commands are registered by importing the commands package
import git_lab.commands  # noqa: F401
from git_lab.commands import Invocation, get_command_registry
from git_lab.config import resolve, resolve_output_format
from git_lab.context import build
from git_lab.errors import GitLabCliError, TransportError
from git_lab.logging_utils import setup_logging
from git_lab.models import DEFAULT_MAX_RETRIES, OutputFormat
from git_lab.store import open_stores

GROUP_HELP = {
    "config": "Read and write git-lab configuration",
    "project": "Attach, refresh and inspect the GitLab project of this repository",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-lab",
        description="Work with GitLab projects, issues and merge requests from a git repository.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Configuration is read from, in order of precedence:
    command-line flags
    environment variables   GITLAB_HOST, GITLAB_TOKEN, GITLAB_PROJECTID, GITLAB_FORMAT,
                            GITLAB_TLS_VERIFY, GITLAB_CACHE_MAXAGE, GITLAB_ANCESTORS_MAXDEPTH
    local git config        .git/config        [gitlab] section
    global git config       ~/.gitconfig       [gitlab] section

Examples:
    # Save server credentials for every repository
    git lab init --host https://gitlab.example.com --token glpat-XXXX

    # Bind this repository to its GitLab project (found via the origin remote)
    git lab project attach

    # Labels starting with "bug", from the local metadata cache
    git lab labels bug

    # Fail unless both labels exist on the server
    git lab labels --check bug feature

    # Show where every setting comes from
    git lab config show
""",
    )
    parser.add_argument("--host", default=None, help="GitLab server URL")
    parser.add_argument("--token", default=None, help="GitLab personal access token")
    parser.add_argument("--project-id", type=int, default=None, help="GitLab project id to act on")
    parser.add_argument(
        "--format", dest="output_format", choices=["text", "json"], default=None, help="Output format"
    )
    parser.add_argument(
        "--no-tls-verify",
        dest="tls_verify",
        action="store_false",
        default=None,
        help="Do not verify the server's TLS certificate",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=DEFAULT_MAX_RETRIES,
        help=f"Maximum retry attempts for transient errors (default: {DEFAULT_MAX_RETRIES})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True, metavar="COMMAND", help="Command to run")

    groups: dict[str, argparse._SubParsersAction] = {}
    for key, cmd_cls in sorted(get_command_registry().items()):
        group, _, name = key.rpartition(" ")
        target = subparsers
        if group:
            if group not in groups:
                group_parser = subparsers.add_parser(group, help=GROUP_HELP.get(group))
                groups[group] = group_parser.add_subparsers(
                    dest=f"{group}_command", required=True, metavar="SUBCOMMAND"
                )
            target = groups[group]
        sub = target.add_parser(name, help=cmd_cls.__doc__)
        cmd_cls.add_arguments(sub)
        sub.set_defaults(command_cls=cmd_cls)

    return parser


def flags_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """The command-line configuration source: key -> value, None when not given."""
    return {
        "host": args.host,
        "token": args.token,
        "projectid": args.project_id,
        "format": args.output_format,
        "tls.verify": args.tls_verify,
    }


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    flags = flags_from_args(args)
    repo, local_store, global_store = open_stores()
    invocation = Invocation(
        flags=flags,
        environ=dict(os.environ),
        repo=repo,
        local_store=local_store,
        global_store=global_store,
    )
    invocation.output_format = resolve_output_format(invocation.providers())
    logger = setup_logging(json_mode=invocation.output_format == OutputFormat.JSON, verbose=args.verbose)
    command = args.command_cls(args, invocation)

    try:
        ctx = None
        if command.requires_config:
            config = resolve(flags, invocation.environ, local_store, global_store)
            cache = invocation.cache(config.cache_max_age)
            ctx = build(config, cache, requires_project=command.requires_project, max_retries=args.max_retries)
        return command.run(ctx)
    except GitLabCliError as e:
        logger.error(str(e))
        return e.exit_code
    except requests.RequestException as e:
        logger.error(f"GitLab request failed: {e}")
        return TransportError.exit_code
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
