"""Control-socket arena: the filesystem is the only tunnel/master state.

Each OpenSSH control socket is a named file in one directory.  Nothing is cached in
memory, so several controller processes looking at the same directory agree on
what exists.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Protocol

MASTER_SUFFIX = ".ctl"
_TUNNEL_NAME = re.compile(r"^(?P<alias>.+)_(?P<port>\d+)$")


def master_name(alias: str) -> str:
    return f"{alias}{MASTER_SUFFIX}"


def tunnel_name(alias: str, local_port: int) -> str:
    return f"{alias}_{local_port}"


def parse_tunnel_name(name: str) -> tuple[str, int] | None:
    """Recover ``(alias, local_port)`` from a tunnel socket name, else ``None``."""
    if name.endswith(MASTER_SUFFIX):
        return None
    match = _TUNNEL_NAME.match(name)
    if not match:
        return None
    return match.group("alias"), int(match.group("port"))


class SocketArena(Protocol):
    """Named handles keyed by alias (and port, for tunnels)."""

    def path(self, name: str) -> Path: ...

    def exists(self, name: str) -> bool: ...

    def remove(self, name: str) -> None: ...

    def names(self) -> list[str]: ...

    def ensure_root(self) -> None: ...


class DirectoryArena:
    """SocketArena backed by a real directory (default ``~/.ssh/mux``)."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser()

    def path(self, name: str) -> Path:
        if "/" in name or name in ("", ".", ".."):
            raise ValueError(f"Invalid socket name: {name!r}")
        return self.root / name

    def exists(self, name: str) -> bool:
        return os.path.lexists(self.path(name))

    def remove(self, name: str) -> None:
        self.path(name).unlink(missing_ok=True)

    def names(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(entry.name for entry in self.root.iterdir() if not entry.is_dir())

    def ensure_root(self) -> None:
        self.root.mkdir(mode=0o700, parents=True, exist_ok=True)
