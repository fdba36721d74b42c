"""
Builder for the Drive v3 ``files.list`` filter language.

Every literal interpolated into a query goes through ``escape_literal``;
callers describe conditions as ``Predicate`` values instead of formatting
query strings themselves.
"""

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Tuple

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

_ALLOWED_FIELDS = {"name", "mimeType", "trashed", "parents", "appProperties"}
_ALLOWED_OPERATORS = {"=", "!=", "contains", "in", "has"}


def escape_literal(value: str) -> str:
    """Escape a value for use inside a single-quoted query literal."""
    return str(value).replace("\\", "\\\\").replace("'", "\\'")


@dataclass(frozen=True)
class Predicate:
    """
    One clause of a Drive query.

    ``value`` is a string for ordinary comparisons, a bool for ``trashed`` and a
    ``(key, value)`` tuple for ``appProperties has``.
    """

    field: str
    operator: str
    value: object

    def render(self) -> str:
        if self.field not in _ALLOWED_FIELDS:
            raise ValueError(f"Unsupported query field: {self.field!r}")
        if self.operator not in _ALLOWED_OPERATORS:
            raise ValueError(f"Unsupported query operator: {self.operator!r}")

        if self.operator == "in":
            # Drive puts the literal on the left: '<id>' in parents
            return f"'{escape_literal(self.value)}' in {self.field}"

        if self.operator == "has":
            if not isinstance(self.value, tuple) or len(self.value) != 2:
                raise ValueError("'has' predicates take a (key, value) tuple")
            key, value = self.value
            return (
                f"{self.field} has {{ key='{escape_literal(key)}' "
                f"and value='{escape_literal(value)}' }}"
            )

        if isinstance(self.value, bool):
            return f"{self.field} {self.operator} {'true' if self.value else 'false'}"

        return f"{self.field} {self.operator} '{escape_literal(self.value)}'"


def in_parents(parent_id: str) -> Predicate:
    return Predicate("parents", "in", parent_id)


def name_equals(name: str) -> Predicate:
    return Predicate("name", "=", name)


def mime_type_equals(mime_type: str) -> Predicate:
    return Predicate("mimeType", "=", mime_type)


def is_folder() -> Predicate:
    return mime_type_equals(FOLDER_MIME_TYPE)


def is_not_folder() -> Predicate:
    return Predicate("mimeType", "!=", FOLDER_MIME_TYPE)


def not_trashed() -> Predicate:
    return Predicate("trashed", "=", False)


def app_property(key: str, value: str) -> Predicate:
    return Predicate("appProperties", "has", (key, value))


def app_properties(tags: Mapping[str, str]) -> Tuple[Predicate, ...]:
    return tuple(app_property(key, value) for key, value in tags.items())


def build_query(predicates: Iterable[Predicate]) -> str:
    clauses = [predicate.render() for predicate in predicates]
    if not clauses:
        raise ValueError("A Drive query needs at least one predicate")
    return " and ".join(clauses)


def folder_query(parent_id: str, name: Optional[str] = None) -> str:
    predicates = [in_parents(parent_id), is_folder(), not_trashed()]
    if name is not None:
        predicates.append(name_equals(name))
    return build_query(predicates)
