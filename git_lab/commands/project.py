"""Attach, detach, refresh and inspect the project bound to this repository."""

from __future__ import annotations

import argparse

from git_lab.attach import AttachmentWorkflow, MetadataFetcher, detach
from git_lab.cache import utcnow
from git_lab.commands.base import Command, register_command
from git_lab.discovery import list_remote_urls
from git_lab.errors import NotInRepository
from git_lab.models import CommandContext, ProjectMetadataCache


def _add_ancestor_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--ancestors",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Merge labels and milestones inherited from parent groups (default: on)",
    )


def _summary(record: ProjectMetadataCache) -> dict:
    return {
        "project_id": record.project_id,
        "path_with_namespace": record.path_with_namespace,
        "default_branch": record.default_branch,
        "labels": len(record.labels),
        "members": len(record.members),
        "milestones": len(record.milestones),
        "fetched_at": record.fetched_at.isoformat(),
    }


@register_command("attach", group="project")
class AttachCommand(Command):
    """Attach a GitLab project to the local repository."""

    @staticmethod
    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--project-id",
            dest="attach_project_id",
            type=int,
            default=None,
            help="Attach this project id instead of looking up the git remote",
        )
        _add_ancestor_arguments(parser)

    def run(self, ctx: CommandContext | None) -> int:
        repo = self.invocation.require_repo()
        cache = self.invocation.cache(ctx.config.cache_max_age)
        workflow = AttachmentWorkflow(
            ctx.client, cache, self.invocation.local_store, max_depth=ctx.config.ancestor_max_depth
        )
        record = workflow.attach(
            ctx.config,
            list_remote_urls(repo),
            ancestor_traversal=self.args.ancestors,
            project_id=self.args.attach_project_id,
        )
        self.emit(
            ctx,
            _summary(record),
            [f"Attached to {record.path_with_namespace} (project_id={record.project_id})"],
        )
        return 0


@register_command("detach", group="project")
class DetachCommand(Command):
    """Detach the repository from its GitLab project and drop the cached metadata."""

    requires_config = False

    def run(self, ctx: CommandContext | None) -> int:
        self.invocation.require_repo()
        project_id = detach(self.invocation.local_store, self.invocation.cache())
        if project_id is None:
            self.logger.info("Repository was not attached")
        self.emit(
            ctx,
            {"detached": project_id},
            [f"Detached from project {project_id}"] if project_id is not None else [],
        )
        return 0


@register_command("refresh", group="project")
class RefreshCommand(Command):
    """Re-fetch labels, members and milestones of the attached project."""

    requires_project = True

    @staticmethod
    def add_arguments(parser: argparse.ArgumentParser) -> None:
        _add_ancestor_arguments(parser)

    def run(self, ctx: CommandContext | None) -> int:
        cache = self.invocation.cache(ctx.config.cache_max_age)
        if cache is None:
            raise NotInRepository("The metadata cache lives in a git repository; run this inside one.")
        fetch = MetadataFetcher(ctx.client, self.args.ancestors, ctx.config.ancestor_max_depth)
        record = cache.refresh(ctx.project_id, fetch)
        self.emit(ctx, _summary(record), [f"Refreshed metadata for {record.path_with_namespace}"])
        return 0


@register_command("info", group="project")
class InfoCommand(Command):
    """Show the cached metadata of the attached project."""

    requires_project = True

    def run(self, ctx: CommandContext | None) -> int:
        record = ctx.metadata
        if record is None:
            self.logger.warning(
                f"No cached metadata for project {ctx.project_id}; run `git lab project refresh`"
            )
            self.emit(ctx, {"project_id": ctx.project_id, "cached": False}, [f"Project ID: {ctx.project_id}"])
            return 0

        if ctx.stale:
            hours = record.age(utcnow()).total_seconds() / 3600
            self.logger.warning(f"Cached metadata is {hours:.1f}h old; run `git lab project refresh`")

        data = dict(_summary(record), stale=ctx.stale)
        self.emit(
            ctx,
            data,
            [
                f"Project ID: {record.project_id}",
                f"Path: {record.path_with_namespace}",
                f"Default branch: {record.default_branch or '(none)'}",
                f"Labels: {len(record.labels)}",
                f"Members: {len(record.members)}",
                f"Milestones: {len(record.milestones)}",
                f"Fetched: {record.fetched_at.isoformat()}{' (stale)' if ctx.stale else ''}",
            ],
        )
        return 0
