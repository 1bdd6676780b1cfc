"""List and check cached reference data: labels, members, milestones.

These listings are the autocomplete source for interactive issue and merge
request flows. ``--check`` is the validation path: it never trusts a stale
record and refreshes before rejecting a name.
"""

from __future__ import annotations

import argparse

from git_lab.attach import MetadataFetcher
from git_lab.cache import complete, utcnow
from git_lab.commands.base import Command, register_command
from git_lab.errors import UnknownReference
from git_lab.models import CommandContext, ProjectMetadataCache


class ReferenceCommand(Command):
    collection = ""
    requires_project = True

    @staticmethod
    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("prefix", nargs="?", default="", help="Only show names starting with this prefix")
        parser.add_argument("--refresh", action="store_true", help="Re-fetch from the server first")
        parser.add_argument(
            "--check",
            nargs="+",
            metavar="NAME",
            default=None,
            help="Verify that every NAME exists on the server; fails with exit status 6 otherwise",
        )

    def run(self, ctx: CommandContext | None) -> int:
        fetch = MetadataFetcher(ctx.client, max_depth=ctx.config.ancestor_max_depth)
        cache = self.invocation.cache(ctx.config.cache_max_age)

        if self.args.check:
            if cache is None:
                record = fetch(ctx.project_id)
                self._require(record, self.args.check)
            else:
                record = cache.validated(ctx.project_id, fetch, **{self.collection: self.args.check})
            self.emit(ctx, {self.collection: sorted(self.args.check), "valid": True}, [])
            return 0

        record = self._record(ctx, cache, fetch)
        names = complete(record, self.collection, self.args.prefix)
        values = getattr(record, self.collection)
        self.emit(
            ctx,
            {name: values[name] for name in names},
            [f"{name}\t{values[name]}" for name in names],
        )
        return 0

    def _record(self, ctx: CommandContext, cache, fetch: MetadataFetcher) -> ProjectMetadataCache:
        if cache is None:
            return fetch(ctx.project_id)
        if self.args.refresh or ctx.metadata is None:
            return cache.refresh(ctx.project_id, fetch)
        if ctx.stale:
            hours = ctx.metadata.age(utcnow()).total_seconds() / 3600
            self.logger.warning(f"Showing cached {self.collection} from {hours:.1f}h ago; use --refresh to update")
        return ctx.metadata

    def _require(self, record: ProjectMetadataCache, names: list[str]) -> None:
        missing = set(names) - set(getattr(record, self.collection))
        if missing:
            raise UnknownReference(self.collection, missing)


@register_command("labels")
class LabelsCommand(ReferenceCommand):
    """List the project's labels (with inherited group labels) and their colors."""

    collection = "labels"


@register_command("members")
class MembersCommand(ReferenceCommand):
    """List the project's members and their user ids."""

    collection = "members"


@register_command("milestones")
class MilestonesCommand(ReferenceCommand):
    """List active milestones by due date."""

    collection = "milestones"
