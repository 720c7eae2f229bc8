"""Command generators: turn an event into shell commands or SQL.

Generators are pure apart from writing their rendered target into the event
context, which happens before the command list is returned so that later
reactors in the chain can reference ``{{ioEvent.context.<kind>.target}}``.

Event paths and every value substituted into a target are shell-quoted
before they reach bash. The target template itself is written by the
operator and is passed through as is, so ``~`` and ``$VAR`` still expand.
"""

import re
import shlex

from pymysql.converters import escape_string

from overwatch.errors import ConfigurationError, UnsupportedArchiveType
from overwatch.template import render

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*(\.[A-Za-z_][A-Za-z0-9_$]*)?$")


class CommandGenerator:
    """Base class. ``generate(event)`` returns the statements to execute."""

    kind: str = ""

    def __init__(self, params: dict):
        self.params = dict(params or {})

    def generate(self, event) -> list[str]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Shell generators
# ---------------------------------------------------------------------------

class TargetCommand(CommandGenerator):
    """Shell generator driven by a single ``target`` template."""

    def __init__(self, params: dict):
        super().__init__(params)
        self.target = self.params.get("target")
        if not self.target:
            raise ConfigurationError(f"reactor.{self.kind}.target is required")

    def render_target(self, event) -> str:
        target = render(self.target, event.template_scope())
        event.context[self.kind] = {"target": target}
        return target

    def shell_target(self, event) -> str:
        """The target as a shell word: substituted values quoted, template text raw."""
        return render(self.target, event.template_scope(), quote=shlex.quote)

    def generate(self, event) -> list[str]:
        self.render_target(event)
        return [self.command(event, self.shell_target(event))]

    def command(self, event, target: str) -> str:
        raise NotImplementedError


class CopyFile(TargetCommand):
    kind = "copyFile"

    def command(self, event, target):
        return f"yes | cp {shlex.quote(event.full_path)} {target}"


class MoveFile(TargetCommand):
    kind = "moveFile"

    def command(self, event, target):
        return f"mv {shlex.quote(event.full_path)} {target}"


class CopyAll(TargetCommand):
    """Copies the whole parent directory of the matched file."""

    kind = "copyAll"

    def command(self, event, target):
        return f"yes | cp -R {shlex.quote(event.parent_path)}/* {target}"


class MoveAll(TargetCommand):
    """Moves the whole parent directory contents of the matched file."""

    kind = "moveAll"

    def command(self, event, target):
        return f"mv {shlex.quote(event.parent_path)}/* {target}"


class MakeDir(TargetCommand):
    kind = "mkdir"

    def command(self, event, target):
        return f"mkdir -p {target}"


class ExtractFileTo(TargetCommand):
    """Unpacks tgz/gz with tar and zip with unzip, chosen by filename suffix."""

    kind = "extractFileTo"

    def generate(self, event) -> list[str]:
        lower = event.filename.lower()
        if lower.endswith((".tgz", ".gz")):
            template = "tar -xvf {src} -C {dst}"
        elif lower.endswith(".zip"):
            # -o: never prompt, the worker's stdin is the command stream
            template = "unzip -o {src} -d {dst}"
        else:
            raise UnsupportedArchiveType(event.filename)

        self.render_target(event)
        return [template.format(src=shlex.quote(event.full_path), dst=self.shell_target(event))]


# ---------------------------------------------------------------------------
# SQL generators
# ---------------------------------------------------------------------------

class SqlInsert(CommandGenerator):
    """Single-row INSERT built from rendered value templates."""

    kind = "sqlInsert"

    def __init__(self, params: dict):
        super().__init__(params)
        self.table = self.params.get("table")
        self.columns = list(self.params.get("columns") or [])
        self.values = list(self.params.get("values") or [])

        if not self.table:
            raise ConfigurationError("reactor.sqlInsert.table is required")
        if not self.columns:
            raise ConfigurationError("reactor.sqlInsert.columns is required")
        if len(self.columns) != len(self.values):
            raise ConfigurationError(
                f"reactor.sqlInsert has {len(self.columns)} columns "
                f"but {len(self.values)} values"
            )
        for name in [self.table, *self.columns]:
            if not _IDENTIFIER.match(str(name)):
                raise ConfigurationError(f"reactor.sqlInsert: invalid identifier {name!r}")

    def generate(self, event) -> list[str]:
        scope = event.template_scope()
        quoted = [
            "'" + escape_string(render(str(value), scope)) + "'"
            for value in self.values
        ]
        return [
            f"INSERT INTO {self.table} ({','.join(self.columns)}) "
            f"VALUES ({','.join(quoted)});"
        ]


SHELL_GENERATORS = {
    cls.kind: cls
    for cls in (MakeDir, CopyFile, MoveFile, CopyAll, MoveAll, ExtractFileTo)
}

SQL_GENERATORS = {
    SqlInsert.kind: SqlInsert,
}
