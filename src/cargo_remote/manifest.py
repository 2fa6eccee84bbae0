"""Format-preserving access to the ``[patch]`` section of a Cargo manifest.

The manifest is parsed with ``tomlkit`` so that comments, key order and
whitespace survive a parse/render cycle unchanged.  Only the ``path``
attribute of individual crate overrides is ever written back.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from typing import Iterator

import tomlkit
from tomlkit.exceptions import ParseError
from tomlkit.items import String
from tomlkit.toml_document import TOMLDocument

from .errors import ManifestParseError

__all__ = [
    "OVERRIDE_TABLE_KEY",
    "PATH_ATTRIBUTE",
    "ManifestDocument",
    "OverrideEntry",
    "parse_manifest",
    "render_manifest",
]

OVERRIDE_TABLE_KEY = "patch"
PATH_ATTRIBUTE = "path"


@dataclass(frozen=True, slots=True)
class OverrideEntry:
    """Descriptor for a single ``[patch.<group>]`` crate entry."""

    group: str
    crate: str
    path: str | None

    @property
    def label(self) -> str:
        return f"{OVERRIDE_TABLE_KEY}.{self.group}.{self.crate}"


class ManifestDocument:
    """Editable manifest that renders byte-for-byte outside rewritten values."""

    def __init__(self, document: TOMLDocument) -> None:
        self._document = document

    @property
    def document(self) -> TOMLDocument:
        """Return the underlying ``tomlkit`` document."""

        return self._document

    def override_table(self) -> MutableMapping[str, object] | None:
        """Return the ``[patch]`` table or ``None`` when the manifest has none."""

        table = self._document.get(OVERRIDE_TABLE_KEY)
        if not isinstance(table, MutableMapping):
            return None
        return table

    def iter_overrides(self) -> Iterator[OverrideEntry]:
        """Yield crate overrides in document order (group first, then crate).

        Group and crate values that are not tables are skipped; they are not
        crate overrides Cargo would accept either.
        """

        table = self.override_table()
        if table is None:
            return
        for group, crates in table.items():
            if not isinstance(crates, Mapping):
                continue
            for crate, attributes in crates.items():
                if not isinstance(attributes, Mapping):
                    continue
                entry = OverrideEntry(group=str(group), crate=str(crate), path=None)
                raw_path = attributes.get(PATH_ATTRIBUTE)
                if raw_path is None:
                    yield entry
                    continue
                if not isinstance(raw_path, str):
                    raise ManifestParseError(
                        f"{entry.label}.{PATH_ATTRIBUTE} must be a string, "
                        f"found {type(raw_path).__name__}"
                    )
                yield OverrideEntry(group=entry.group, crate=entry.crate, path=str(raw_path))

    def set_override_path(self, group: str, crate: str, value: str) -> None:
        """Replace the ``path`` attribute of one crate override in place."""

        attributes = self._crate_attributes(group, crate)
        current = attributes.get(PATH_ATTRIBUTE)
        literal = isinstance(current, String) and current.type.is_literal()
        # Literal strings cannot hold a single quote.
        if literal and "'" in value:
            literal = False
        attributes[PATH_ATTRIBUTE] = tomlkit.string(value, literal=literal)

    def render(self) -> str:
        """Serialise the manifest back to TOML text."""

        return self._document.as_string()

    def __str__(self) -> str:
        return self.render()

    def _crate_attributes(self, group: str, crate: str) -> MutableMapping[str, object]:
        table = self.override_table()
        crates = table.get(group) if table is not None else None
        attributes = crates.get(crate) if isinstance(crates, Mapping) else None
        if not isinstance(attributes, MutableMapping):
            raise KeyError(f"{OVERRIDE_TABLE_KEY}.{group}.{crate}")
        return attributes


def parse_manifest(text: str) -> ManifestDocument:
    """Parse manifest ``text`` into a :class:`ManifestDocument`."""

    try:
        document = tomlkit.parse(text)
    except ParseError as error:
        raise ManifestParseError(
            f"Invalid manifest: {error}",
            line=getattr(error, "line", None),
            column=getattr(error, "col", None),
        ) from error
    return ManifestDocument(document)


def render_manifest(document: ManifestDocument) -> str:
    """Return the TOML text for ``document``."""

    return document.render()
