"""
Field metadata extraction.

An entity descriptor is a static table of ``field name -> declaration``. The
declaration lists the field-bearing access levels at which the field is meant
to be publicly exposed or settable, written either as ``"create/read"`` or as
an iterable of access levels. ``None`` or ``""`` means the field takes part
in none of them and is never made public.
"""
from typing import Iterable, List, Mapping, Optional, Union

from app.features.permissions.exceptions import InvalidFieldDeclaration
from app.features.permissions.types import (
    AccessLevel,
    FIELD_ACCESS_LEVELS,
    PermissableField,
)


Declaration = Optional[Union[str, Iterable[Union[str, AccessLevel]]]]
EntityDescriptor = Mapping[str, Declaration]


def _parse_declaration(name: str, declaration: Declaration) -> frozenset:
    if declaration is None:
        return frozenset()
    if isinstance(declaration, str):
        parts = [p for p in declaration.split("/") if p.strip()]
    else:
        try:
            parts = list(declaration)
        except TypeError:
            raise InvalidFieldDeclaration(
                f"field {name!r}: declaration must be a string or an iterable, got {type(declaration).__name__}"
            ) from None

    levels = set()
    for part in parts:
        try:
            level = AccessLevel.parse(part)
        except ValueError:
            raise InvalidFieldDeclaration(f"field {name!r}: invalid access level {part!r}") from None
        if level not in FIELD_ACCESS_LEVELS:
            raise InvalidFieldDeclaration(f"field {name!r}: {level.value} cannot be declared on a field")
        levels.add(level)
    return frozenset(levels)


def extract_fields(descriptor: EntityDescriptor) -> List[PermissableField]:
    """
    Normalize an entity descriptor into a list of permissable fields.

    Field names are lower-cased and must be unique.

    Raises:
        InvalidFieldDeclaration: on an empty, non-string or duplicate field name, or
            on a declaration naming an unknown or type-level access level.
    """
    fields: List[PermissableField] = []
    seen = set()
    for raw_name, declaration in descriptor.items():
        if not isinstance(raw_name, str) or not raw_name.strip():
            raise InvalidFieldDeclaration(f"invalid field name: {raw_name!r}")
        name = raw_name.strip().lower()
        if name in seen:
            raise InvalidFieldDeclaration(f"duplicate field name: {name!r}")
        seen.add(name)
        fields.append(PermissableField(name, _parse_declaration(name, declaration)))
    return fields


def filter_fields(fields: Iterable[PermissableField], access_level: AccessLevel) -> List[PermissableField]:
    return [f for f in fields if f.can(access_level)]


def field_names(fields: Iterable[PermissableField]) -> List[str]:
    return [f.name for f in fields]
