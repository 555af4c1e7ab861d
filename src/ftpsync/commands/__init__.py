"""CLI command modules for ftpsync."""

from ftpsync.commands.file_transfer import (
    chmod,
    config_group,
    get,
    ls,
    mkdir,
    mv,
    put,
    rm,
    stat,
    trust_group,
)

__all__ = [
    "chmod",
    "config_group",
    "get",
    "ls",
    "mkdir",
    "mv",
    "put",
    "rm",
    "stat",
    "trust_group",
]
