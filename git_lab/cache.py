"""On-disk cache of per-project reference data (labels, members, milestones).

One JSON file per attached project, stored under the repository's git
directory. Writes go through a temporary file that is atomically renamed over
the previous record, so concurrent readers never see a partial file. An
unreadable file or one written with another schema version is treated as a
cache miss.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path

import git

from git_lab.errors import CorruptRecord, GitLabCliError, StaleRecord, UnknownReference
from git_lab.models import (
    CACHE_DIRNAME,
    CACHE_SCHEMA_VERSION,
    DEFAULT_CACHE_MAX_AGE_HOURS,
    LOGGER_NAME,
    ProjectMetadataCache,
)

logger = logging.getLogger(LOGGER_NAME)

Fetcher = Callable[[int], ProjectMetadataCache]

COLLECTIONS = ("labels", "members", "milestones")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MetadataCache:
    def __init__(
        self,
        cache_dir: str | os.PathLike,
        max_age: timedelta = timedelta(hours=DEFAULT_CACHE_MAX_AGE_HOURS),
        schema_version: int = CACHE_SCHEMA_VERSION,
    ):
        self.cache_dir = Path(cache_dir)
        self.max_age = max_age
        self.schema_version = schema_version

    @classmethod
    def for_repository(cls, repo: git.Repo, max_age: timedelta | None = None) -> MetadataCache:
        cache_dir = Path(repo.git_dir) / CACHE_DIRNAME / "cache"
        if max_age is None:
            return cls(cache_dir)
        return cls(cache_dir, max_age=max_age)

    def path_for(self, project_id: int) -> Path:
        return self.cache_dir / f"project-{project_id}.json"

    # -- Reads --

    def load(self, project_id: int) -> ProjectMetadataCache | None:
        """Read the record for ``project_id``.

        Returns None when no file exists and raises CorruptRecord when the file
        cannot be decoded, has another schema version or belongs to another
        project.
        """
        path = self.path_for(project_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise CorruptRecord(str(path), str(e)) from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptRecord(str(path), f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CorruptRecord(str(path), "top-level value is not an object")

        version = data.get("schema_version")
        if version != self.schema_version:
            raise CorruptRecord(str(path), f"schema version {version!r}, expected {self.schema_version}")

        try:
            record = ProjectMetadataCache.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptRecord(str(path), f"malformed record: {e!r}") from e
        if record.project_id != project_id:
            raise CorruptRecord(str(path), f"record is for project {record.project_id}")
        return record

    def get(self, project_id: int) -> ProjectMetadataCache | None:
        """Return the cached record, or None on a miss. Corrupt records count as a miss."""
        try:
            record = self.load(project_id)
        except CorruptRecord as e:
            logger.warning(f"{e}; it will be fetched again")
            return None
        if record is None:
            logger.debug(f"Metadata cache miss for project {project_id}")
        else:
            logger.debug(f"Metadata cache hit for project {project_id} (fetched {record.fetched_at.isoformat()})")
        return record

    def is_stale(self, record: ProjectMetadataCache, now: datetime | None = None) -> bool:
        if record.schema_version != self.schema_version:
            return True
        return record.age(now or utcnow()) > self.max_age

    # -- Writes --

    def put(self, project_id: int, record: ProjectMetadataCache) -> Path:
        """Atomically replace the stored record for ``project_id``."""
        if record.project_id != project_id:
            raise ValueError(f"Record for project {record.project_id} cannot be stored as project {project_id}")
        path = self.path_for(project_id)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(record.to_dict(), indent=2) + "\n"

        fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Wrote metadata cache {path}")
        return path

    def invalidate(self, project_id: int) -> bool:
        path = self.path_for(project_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"Removed metadata cache {path}")
        return True

    # -- Refresh --

    def refresh(self, project_id: int, fetch: Fetcher) -> ProjectMetadataCache:
        """Fetch a complete record and store it.

        ``fetch`` builds the whole record in memory, so a failure anywhere in it
        leaves the stored record untouched. The error propagates to the caller.
        """
        logger.debug(f"Refreshing metadata for project {project_id}")
        record = fetch(project_id)
        self.put(project_id, record)
        return record

    def current(
        self, project_id: int, fetch: Fetcher, now: datetime | None = None
    ) -> tuple[ProjectMetadataCache, bool]:
        """Return (record, refreshed), fetching when the record is missing or stale."""
        record = self.get(project_id)
        if record is not None and not self.is_stale(record, now):
            return record, False
        return self.refresh(project_id, fetch), True

    def validated(
        self,
        project_id: int,
        fetch: Fetcher,
        labels: Iterable[str] = (),
        members: Iterable[str] = (),
        milestones: Iterable[str] = (),
        now: datetime | None = None,
        allow_stale: bool = False,
    ) -> ProjectMetadataCache:
        """Return a record known to contain every requested name.

        A fresh record that already contains the names is used as is. Otherwise
        the record is refreshed once and checked again, so a stale cache never
        confirms a label or member that may no longer exist on the server.
        """
        wanted = {"labels": set(labels), "members": set(members), "milestones": set(milestones)}
        record = self.get(project_id)

        if record is not None and not self.is_stale(record, now) and not _missing(record, wanted):
            return record

        try:
            record = self.refresh(project_id, fetch)
        except GitLabCliError as e:
            if record is None or not self.is_stale(record, now):
                raise
            if not allow_stale:
                age = record.age(now or utcnow()).total_seconds() / 3600
                raise StaleRecord(project_id, age) from e
            logger.warning(f"Could not refresh metadata for project {project_id}, using cached copy: {e}")

        missing = _missing(record, wanted)
        for collection in COLLECTIONS:
            if missing.get(collection):
                raise UnknownReference(collection, missing[collection])
        return record


def _missing(record: ProjectMetadataCache, wanted: dict[str, set[str]]) -> dict[str, set[str]]:
    missing = {}
    for collection, names in wanted.items():
        absent = names - set(getattr(record, collection))
        if absent:
            missing[collection] = absent
    return missing


def complete(record: ProjectMetadataCache, collection: str, prefix: str = "") -> list[str]:
    """Names in ``collection`` starting with ``prefix`` (case-insensitive), in record order."""
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection}")
    needle = prefix.lower()
    return [name for name in getattr(record, collection) if name.lower().startswith(needle)]
