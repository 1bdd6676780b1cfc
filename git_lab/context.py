"""Build the per-invocation CommandContext handed to every command."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from git_lab.cache import MetadataCache
from git_lab.client import GitLabClient
from git_lab.errors import NotAttached
from git_lab.models import DEFAULT_MAX_RETRIES, LOGGER_NAME, CommandContext, EffectiveConfig

logger = logging.getLogger(LOGGER_NAME)


def build(
    config: EffectiveConfig,
    cache: MetadataCache | None,
    requires_project: bool = True,
    client_factory: Callable[..., GitLabClient] = GitLabClient,
    max_retries: int = DEFAULT_MAX_RETRIES,
    now: datetime | None = None,
) -> CommandContext:
    """Combine the effective configuration with the cached project metadata.

    Raises NotAttached when ``requires_project`` is set and no project id was
    resolved. The returned metadata may be stale; ``CommandContext.stale`` says so.
    """
    if config.project_id is None and requires_project:
        raise NotAttached()

    metadata = None
    stale = False
    if config.project_id is not None:
        metadata = cache.get(config.project_id) if cache is not None else None
        stale = metadata is None or (cache is not None and cache.is_stale(metadata, now))
        if metadata is not None and stale:
            logger.debug(f"Cached metadata for project {config.project_id} is stale")

    default_branch = config.default_branch
    if default_branch is None and metadata is not None:
        default_branch = metadata.default_branch
        config = config.with_default_branch(default_branch)

    client = client_factory(config.host, config.token, verify=config.tls_verify, max_retries=max_retries)
    return CommandContext(
        config=config,
        client=client,
        project_id=config.project_id,
        default_branch=default_branch,
        output_format=config.output_format,
        metadata=metadata,
        stale=stale,
    )
