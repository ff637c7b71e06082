from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from . import codec
from .codec import Line, LineKind
from .errors import RegistryIOError, ServerExistsError, ServerNotFoundError
from .models import AuthMethod, Server

log = logging.getLogger(__name__)


class Registry:
    """Server registry backed by a single ``KEY=value`` file.

    Nothing is cached: every call re-reads the whole file, and every mutation
    copies the file to ``<file>.bak`` before rewriting it.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    # -- reading --------------------------------------------------------

    def _read(self) -> list[Line]:
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise RegistryIOError(f"Cannot read {self.path}: {e}") from e
        return codec.parse_text(text)

    @staticmethod
    def _names(lines: list[Line]) -> set[str]:
        names = set()
        for line in lines:
            if line.kind is LineKind.ENTRY:
                name = codec.server_name_from_key(line.key)
                if name:
                    names.add(name)
        return names

    @staticmethod
    def _has_host(lines: list[Line], name: str) -> bool:
        key = codec.derive_key(name, codec.HOST)
        return any(line.kind is LineKind.ENTRY and line.key == key for line in lines)

    @staticmethod
    def _lookup(lines: list[Line], name: str, field: str) -> str | None:
        key = codec.derive_key(name, field)
        for line in lines:
            if line.kind is LineKind.ENTRY and line.key == key:
                return codec.decode_value(line.value)
        return None

    def list_names(self) -> list[str]:
        """Return all server names, lowercased and sorted."""
        return sorted(self._names(self._read()))

    def exists(self, name: str) -> bool:
        return self._has_host(self._read(), name)

    def get_field(self, name: str, field: str) -> str | None:
        """Return the decoded value of one field, or None if the line is absent."""
        return self._lookup(self._read(), name, field)

    def _build(self, lines: list[Line], name: str) -> Server:
        def get(field: str) -> str | None:
            return self._lookup(lines, name, field)

        return Server(
            name=name,
            host=get(codec.HOST) or "",
            user=get(codec.USER) or "",
            port=get(codec.PORT),
            key_path=get(codec.KEYPATH) or None,
            password=get(codec.PASSWORD) or None,
            description=get(codec.DESCRIPTION) or None,
            default_dir=get(codec.DEFAULT_DIR) or None,
        )

    def get_server(self, name: str) -> Server | None:
        lines = self._read()
        if not self._has_host(lines, name):
            return None
        return self._build(lines, name)

    def servers(self) -> list[Server]:
        lines = self._read()
        return [self._build(lines, name) for name in sorted(self._names(lines))]

    def find(self, query: str) -> Server | None:
        """Find server by exact name or unique partial name match."""
        lines = self._read()
        names = sorted(self._names(lines))
        q = query.lower()
        if q in names:
            return self._build(lines, q)
        contains = [n for n in names if q in n]
        if len(contains) == 1:
            return self._build(lines, contains[0])
        return None

    # -- writing --------------------------------------------------------

    def _backup(self) -> None:
        if not self.path.exists():
            log.debug("No %s yet, skipping backup", self.path)
            return
        try:
            shutil.copy2(self.path, self.backup_path)
        except OSError as e:
            raise RegistryIOError(f"Backup to {self.backup_path} failed: {e}") from e
        log.debug("Backed up %s to %s", self.path, self.backup_path)

    def _write(self, lines: list[Line]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(codec.render_lines(lines))
                if self.path.exists():
                    shutil.copymode(self.path, tmp)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise RegistryIOError(f"Cannot write {self.path}: {e}") from e
        log.debug("Wrote %d lines to %s", len(lines), self.path)

    def _owned(self, lines: list[Line], name: str) -> list[bool]:
        """Mark the lines that belong to one server.

        A key line belongs to ``name`` when it is exactly ``key_prefix(name)``
        followed by a known field, so ``SSH_SERVER_WEB_DEFAULT_DIR`` is web's
        and ``SSH_SERVER_WEB_PROD_HOST`` is not. The ``# Server:`` comment and
        the blank separator before the block go with it.
        """
        prefix = codec.key_prefix(name)
        owned = []
        for line in lines:
            if line.kind is LineKind.ENTRY:
                mine = line.key.startswith(prefix) and line.key[len(prefix):] in codec.FIELDS
            elif line.kind is LineKind.SERVER_COMMENT:
                mine = line.server.lower() == name.lower()
            else:
                mine = False
            owned.append(mine)
        for i in range(1, len(lines)):
            if owned[i] and not owned[i - 1] and lines[i - 1].kind is LineKind.BLANK:
                owned[i - 1] = True
        return owned

    def _without(self, lines: list[Line], name: str) -> list[Line]:
        owned = self._owned(lines, name)
        return [line for line, mine in zip(lines, owned) if not mine]

    @staticmethod
    def _append_block(lines: list[Line], block: list[str]) -> list[Line]:
        out = list(lines)
        while out and out[-1].kind is LineKind.BLANK:
            out.pop()
        if out:
            out.append(codec.parse_line(""))
        out.extend(codec.parse_line(text) for text in block)
        return out

    @staticmethod
    def _fields(host, user, auth_type, auth_value, port, description, default_dir=None) -> dict:
        method = AuthMethod(auth_type)
        values = {
            "host": host,
            "user": user,
            "port": port,
            "auth value": auth_value,
            "description": description,
            "default dir": default_dir,
        }
        for label, value in values.items():
            if isinstance(value, str) and ("\n" in value or "\r" in value):
                raise ValueError(f"{label} must not contain line breaks")
        return {
            codec.HOST: host,
            codec.USER: user,
            codec.PORT: port if port not in (None, "") else 22,
            codec.PASSWORD: auth_value if method is AuthMethod.PASSWORD else None,
            codec.KEYPATH: auth_value if method is AuthMethod.KEY else None,
            codec.DESCRIPTION: description,
            codec.DEFAULT_DIR: default_dir,
        }

    def add(
        self,
        name: str,
        host: str,
        user: str,
        auth_type: AuthMethod | str,
        auth_value: str,
        port: int | str = 22,
        description: str = "",
    ) -> None:
        """Append a new server block. Raises ServerExistsError for a taken name."""
        lines = self._read()
        if self._has_host(lines, name):
            raise ServerExistsError(name)
        fields = self._fields(host, user, auth_type, auth_value, port, description)
        self._backup()
        self._write(self._append_block(lines, codec.encode_block(name, fields)))
        log.debug("Added server %s", name)

    def update(
        self,
        name: str,
        host: str,
        user: str,
        auth_type: AuthMethod | str,
        auth_value: str,
        port: int | str = 22,
        description: str = "",
        default_dir: str = "",
    ) -> None:
        """Replace a server block. Fields not passed are dropped from the record."""
        lines = self._read()
        if not self._has_host(lines, name):
            raise ServerNotFoundError(name)
        fields = self._fields(host, user, auth_type, auth_value, port, description, default_dir)
        self._backup()
        remaining = self._without(lines, name)
        self._write(self._append_block(remaining, codec.encode_block(name, fields)))
        log.debug("Updated server %s", name)

    def remove(self, name: str) -> None:
        lines = self._read()
        if not self._has_host(lines, name):
            raise ServerNotFoundError(name)
        self._backup()
        self._write(self._without(lines, name))
        log.debug("Removed server %s", name)
