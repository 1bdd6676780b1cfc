"""Tests for the git-config backed key-value store."""

import os

import git
import pytest

from git_lab.errors import NotInRepository
from git_lab.models import Scope
from git_lab.store import GitConfigStore, MemoryStore, find_repository, join_key, open_stores, split_key


class TestKeyMapping:
    """Logical keys map onto the [gitlab] section and its subsections."""

    @pytest.mark.parametrize(
        "key,section,option",
        [
            ("host", "gitlab", "host"),
            ("projectid", "gitlab", "projectid"),
            ("tls.verify", 'gitlab "tls"', "verify"),
            ("cache.maxage", 'gitlab "cache"', "maxage"),
        ],
    )
    def test_split_and_join(self, key, section, option):
        assert split_key(key) == (section, option)
        assert join_key(section, option) == key

    def test_join_ignores_foreign_sections(self):
        assert join_key("core", "bare") is None
        assert join_key('remote "origin"', "url") is None


class TestGitConfigStore:
    """Reads and writes against real git config files."""

    def test_set_then_get(self, local_store):
        local_store.set("host", "https://gitlab.example.com")

        assert local_store.get("host") == "https://gitlab.example.com"

    def test_value_lands_in_repository_config(self, git_repo, local_store):
        local_store.set("projectid", "42")

        with git_repo.config_reader("repository") as reader:
            assert reader.get_value("gitlab", "projectid") == 42

    def test_dotted_key_uses_subsection(self, local_store):
        local_store.set("tls.verify", "false")

        text = local_store.path.read_text()
        assert '[gitlab "tls"]' in text
        assert local_store.get("tls.verify") == "false"

    def test_missing_key_returns_none(self, local_store):
        assert local_store.get("token") is None

    def test_global_store_without_file(self, global_store, isolated_home):
        assert global_store.path == isolated_home / ".gitconfig"
        assert not global_store.path.exists()
        assert global_store.get("host") is None
        assert global_store.items() == {}

    def test_global_store_creates_file(self, global_store):
        global_store.set("token", "glpat-secret")

        assert global_store.path.exists()
        assert GitConfigStore(Scope.GLOBAL).get("token") == "glpat-secret"

    def test_local_and_global_are_independent(self, local_store, global_store):
        global_store.set("host", "https://global.example.com")

        assert local_store.get("host") is None

    def test_unset(self, local_store):
        local_store.set("projectid", "42")

        assert local_store.unset("projectid") is True
        assert local_store.get("projectid") is None
        assert local_store.unset("projectid") is False

    def test_unset_removes_empty_subsection(self, local_store):
        local_store.set("tls.verify", "false")
        local_store.unset("tls.verify")

        assert '[gitlab "tls"]' not in local_store.path.read_text()

    def test_items_only_returns_gitlab_keys(self, git_repo, local_store):
        local_store.set("host", "https://gitlab.example.com")
        local_store.set("tls.verify", "true")
        with git_repo.config_writer("repository") as writer:
            writer.set_value("user", "name", "Someone")

        assert local_store.items() == {"host": "https://gitlab.example.com", "tls.verify": "true"}

    def test_local_store_outside_repository(self):
        store = GitConfigStore(Scope.LOCAL)

        assert store.writable is False
        assert store.get("host") is None
        assert store.unset("host") is False
        with pytest.raises(NotInRepository):
            store.set("host", "https://gitlab.example.com")


class TestFindRepository:
    """Repository discovery from the working directory."""

    def test_finds_repository_from_subdirectory(self, git_repo):
        subdir = git_repo.working_tree_dir + "/src/pkg"
        os.makedirs(subdir)

        found = find_repository(subdir)

        assert found is not None
        assert found.git_dir == git_repo.git_dir

    def test_returns_none_outside_repository(self, tmp_path):
        plain = tmp_path / "plain"
        plain.mkdir()

        assert find_repository(plain) is None

    def test_open_stores(self, git_repo):
        repo, local, global_ = open_stores(git_repo.working_tree_dir)

        assert isinstance(repo, git.Repo)
        assert local.scope == Scope.LOCAL and local.writable
        assert global_.scope == Scope.GLOBAL


class TestMemoryStore:
    def test_round_trip(self):
        store = MemoryStore(Scope.LOCAL)
        store.set("host", "gitlab.example.com")

        assert store.get("host") == "gitlab.example.com"
        assert store.items() == {"host": "gitlab.example.com"}
        assert store.unset("host") is True
        assert store.unset("host") is False

    def test_read_only(self):
        store = MemoryStore(Scope.LOCAL, {"host": "x"}, writable=False)

        with pytest.raises(NotInRepository):
            store.set("host", "y")
        assert store.get("host") == "x"
