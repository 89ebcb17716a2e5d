"""Attribute expressions used inside resource declarations.

A declared attribute value is either a plain JSON-like value or one of the
expression types below (possibly nested inside lists and dicts):

- ``Ref``: an attribute of another declared resource, known after it is applied
- ``VarRef``: the value of a declared variable
- ``Join``: string concatenation of parts
- ``Coalesce``: the first part that is not ``None``

Expressions are the only source of dependency edges besides ``depends_on``.
"""

from typing import Any, Iterator, List, Union

from pydantic import BaseModel, ConfigDict


class Ref(BaseModel):
    """Reference to an attribute of another resource."""

    model_config = ConfigDict(frozen=True)

    address: str
    attribute: str

    def __str__(self) -> str:
        return f"{self.address}.{self.attribute}"


class VarRef(BaseModel):
    """Reference to a declared variable."""

    model_config = ConfigDict(frozen=True)

    name: str

    def __str__(self) -> str:
        return f"var.{self.name}"


class Join(BaseModel):
    """Concatenate parts into one string."""

    model_config = ConfigDict(frozen=True)

    parts: List[Any]
    separator: str = ""


class Coalesce(BaseModel):
    """First option that is not None."""

    model_config = ConfigDict(frozen=True)

    options: List[Any]


Expression = Union[Ref, VarRef, Join, Coalesce]


def ref(address: str, attribute: str = "id") -> Ref:
    return Ref(address=address, attribute=attribute)


def var(name: str) -> VarRef:
    return VarRef(name=name)


def join(*parts: Any, separator: str = "") -> Join:
    return Join(parts=list(parts), separator=separator)


def coalesce(*options: Any) -> Coalesce:
    return Coalesce(options=list(options))


def walk(value: Any) -> Iterator[Union[Ref, VarRef]]:
    """Yield every Ref and VarRef nested anywhere inside value."""
    if isinstance(value, (Ref, VarRef)):
        yield value
    elif isinstance(value, Join):
        for part in value.parts:
            yield from walk(part)
    elif isinstance(value, Coalesce):
        for option in value.options:
            yield from walk(option)
    elif isinstance(value, dict):
        for item in value.values():
            yield from walk(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from walk(item)
