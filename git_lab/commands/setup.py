"""Credential setup and configuration commands."""

from __future__ import annotations

import argparse

from git_lab.commands.base import Command, register_command
from git_lab.config import KEYS, REQUIRED_KEYS, format_value, key_spec, mask, persist, resolve_key, unset
from git_lab.errors import ConfigError, InvalidConfigValue
from git_lab.models import CommandContext, Scope, env_var_name


def _add_scope_arguments(parser: argparse.ArgumentParser, required: bool) -> None:
    scope = parser.add_mutually_exclusive_group(required=required)
    scope.add_argument(
        "--local", dest="scope", action="store_const", const=Scope.LOCAL, help="Use this repository's git config"
    )
    scope.add_argument(
        "--global", dest="scope", action="store_const", const=Scope.GLOBAL, help="Use the user's ~/.gitconfig"
    )


def _stores(command: Command) -> dict:
    return {"local_store": command.invocation.local_store, "global_store": command.invocation.global_store}


@register_command("init")
class InitCommand(Command):
    """Save GitLab server access settings."""

    requires_config = False

    @staticmethod
    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--host", dest="init_host", required=True, help="GitLab server URL")
        parser.add_argument("--token", dest="init_token", required=True, help="Personal access token")
        parser.add_argument("--format", dest="init_format", choices=["text", "json"], help="Default output format")
        parser.add_argument(
            "--no-tls-verify",
            dest="init_tls_verify",
            action="store_false",
            default=None,
            help="Do not verify the server's TLS certificate",
        )
        _add_scope_arguments(parser, required=False)

    def run(self, ctx: CommandContext | None) -> int:
        scope = self.args.scope or Scope.GLOBAL
        if scope == Scope.LOCAL:
            self.logger.warning("Storing the token in the repository config; prefer --global")

        settings = {
            "host": self.args.init_host,
            "token": self.args.init_token,
            "format": self.args.init_format,
            "tls.verify": self.args.init_tls_verify,
        }
        written = {}
        for key, value in settings.items():
            if value is None:
                continue
            written[key] = persist(key, value, scope, **_stores(self))

        self.emit(
            ctx,
            {"scope": scope.value, "keys": sorted(written)},
            [f"Saved {', '.join(sorted(written))} to {scope.value} git config"],
        )
        return 0


@register_command("show", group="config")
class ConfigShowCommand(Command):
    """Show the effective configuration and where each value comes from."""

    requires_config = False

    def run(self, ctx: CommandContext | None) -> int:
        providers = self.invocation.providers()
        data = {}
        lines = []
        invalid = []
        for key in KEYS:
            try:
                found = resolve_key(key, providers)
            except InvalidConfigValue as e:
                invalid.append(key)
                data[key] = {"value": None, "source": e.source.value, "error": e.reason}
                lines.append(f"{key:<20} (invalid: {e.reason})  ({e.source.value})")
                continue
            if found is not None:
                value, source = found
                shown = mask(key, value)
                data[key] = {"value": shown, "source": source.value}
                lines.append(f"{key:<20} {shown}  ({source.value})")
            else:
                data[key] = {"value": None, "source": None}
                hint = f"  (required: set gitlab.{key} or {env_var_name(key)})" if key in REQUIRED_KEYS else ""
                lines.append(f"{key:<20} (not set){hint}")
        self.emit(ctx, data, lines)
        if invalid:
            self.logger.error(f"Invalid configuration for: {', '.join(invalid)}")
            return ConfigError.exit_code
        return 0


@register_command("get", group="config")
class ConfigGetCommand(Command):
    """Print the effective value of one configuration key."""

    requires_config = False

    @staticmethod
    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("key", help="Configuration key, e.g. host or tls.verify")

    def run(self, ctx: CommandContext | None) -> int:
        key_spec(self.args.key)
        found = resolve_key(self.args.key, self.invocation.providers())
        if found is None:
            self.logger.info(f"'{self.args.key}' is not set")
            return 1
        value, source = found
        text = format_value(value)
        self.emit(ctx, {"key": self.args.key, "value": text, "source": source.value}, [text])
        return 0


@register_command("set", group="config")
class ConfigSetCommand(Command):
    """Write one configuration key to the local or global git config."""

    requires_config = False

    @staticmethod
    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("key", help="Configuration key")
        parser.add_argument("value", help="New value")
        _add_scope_arguments(parser, required=True)

    def run(self, ctx: CommandContext | None) -> int:
        written = persist(self.args.key, self.args.value, self.args.scope, **_stores(self))
        shown = mask(self.args.key, written)
        self.emit(
            ctx,
            {"key": self.args.key, "value": shown, "scope": self.args.scope.value},
            [f"{self.args.key} = {shown} ({self.args.scope.value})"],
        )
        return 0


@register_command("unset", group="config")
class ConfigUnsetCommand(Command):
    """Remove one configuration key from the local or global git config."""

    requires_config = False

    @staticmethod
    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("key", help="Configuration key")
        _add_scope_arguments(parser, required=True)

    def run(self, ctx: CommandContext | None) -> int:
        store = self.invocation.local_store if self.args.scope == Scope.LOCAL else self.invocation.global_store
        removed = unset(self.args.key, store)
        if not removed:
            self.logger.info(f"'{self.args.key}' was not set in {self.args.scope.value} config")
        self.emit(
            ctx,
            {"key": self.args.key, "removed": removed, "scope": self.args.scope.value},
            [f"Removed {self.args.key} from {self.args.scope.value} config"] if removed else [],
        )
        return 0
