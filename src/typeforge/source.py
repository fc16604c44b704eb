"""Helpers for assembling generated Python source."""

from __future__ import annotations

import ast
import textwrap
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

INDENT = " " * 4

# Stands in for the embedded source until the final text is known.
SOURCE_PLACEHOLDER = "__typeforge_source__"
SOURCE_ATTRIBUTE = "__source__"


class SourceWriter:
    """Line-oriented writer that tracks indentation of nested blocks."""

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._level = 0

    def line(self, text: str = "") -> None:
        self._lines.append(f"{INDENT * self._level}{text}" if text else "")

    def lines(self, texts: Iterable[str]) -> None:
        for text in texts:
            self.line(text)

    @contextmanager
    def block(self, header: str) -> Iterator[None]:
        """Write a compound statement header and indent what follows.

        An empty body gets a `pass`.
        """
        self.line(header)
        start = len(self._lines)
        self._level += 1
        try:
            yield
        finally:
            if not any(line.strip() for line in self._lines[start:]):
                self.line("pass")
            self._level -= 1

    def fragment(self, code: str, label: str) -> None:
        """Insert caller-supplied code at the current indentation between marker comments."""
        self.line(f"# {label} begins")
        for text in textwrap.dedent(code).strip("\n").splitlines():
            self.line(text.rstrip())
        self.line(f"# {label} ends")

    def render(self) -> str:
        return "\n".join(self._lines) + "\n"


def prettify(source: str) -> str:
    """Re-render source in canonical form.

    Comments do not survive. Source that does not parse is returned unchanged
    so the compiler can report it with proper diagnostics.
    """
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return source
    return ast.unparse(tree) + "\n"


def placeholder_statement(attribute: str = SOURCE_ATTRIBUTE) -> str:
    return f"{attribute} = {SOURCE_PLACEHOLDER!r}"


def embed_source(source: str, attribute: str = SOURCE_ATTRIBUTE) -> str:
    """Replace the placeholder statement with the source text itself.

    The embedded copy is the final text minus the placeholder line.
    """
    marker = placeholder_statement(attribute)
    lines = source.splitlines(keepends=True)
    embedded = "".join(line for line in lines if line.strip() != marker)
    return source.replace(marker, f"{attribute} = {embedded!r}", 1)
