"""Builtin definitions for Starlark dialects and the providers that supply them."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping


class FileKind(str, Enum):
    """The kind of Starlark file a set of builtins applies to."""

    BUILD = "BUILD"
    BZL = "bzl"
    WORKSPACE = "WORKSPACE"
    MODULE = "MODULE"
    BZLMOD = "bzlmod"
    BUCK = "BUCK"
    BZL_BUCK = "bzl_buck"
    BUCKCONFIG = "buckconfig"
    STARLARK = "starlark"
    SKYI = "skyi"

    def __str__(self) -> str:
        return self.value


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"invalid {what}: expected an object")
    return data


def _text(data: Mapping[str, Any], key: str) -> str:
    return data.get(key) or ""


def _put_if(result: dict[str, Any], key: str, value: Any) -> None:
    if value:
        result[key] = value


@dataclass
class Param:
    """A function parameter."""

    name: str
    type: str = ""
    default: str = ""
    required: bool = False
    variadic: bool = False
    kwargs: bool = False

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        _put_if(result, "type", self.type)
        _put_if(result, "default", self.default)
        _put_if(result, "required", self.required)
        _put_if(result, "variadic", self.variadic)
        _put_if(result, "kwargs", self.kwargs)
        return result

    @classmethod
    def from_dict(cls, data: Any) -> Param:
        data = _mapping(data, "param")
        return cls(
            name=_text(data, "name"),
            type=_text(data, "type"),
            default=_text(data, "default"),
            required=bool(data.get("required")),
            variadic=bool(data.get("variadic")),
            kwargs=bool(data.get("kwargs")),
        )


@dataclass
class Signature:
    """A function or method signature."""

    name: str
    doc: str = ""
    params: list[Param] = field(default_factory=list)
    return_type: str = ""
    deprecated: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        _put_if(result, "doc", self.doc)
        if self.params:
            result["params"] = [p.to_dict() for p in self.params]
        _put_if(result, "return_type", self.return_type)
        _put_if(result, "deprecated", self.deprecated)
        return result

    @classmethod
    def from_dict(cls, data: Any) -> Signature:
        data = _mapping(data, "signature")
        return cls(
            name=_text(data, "name"),
            doc=_text(data, "doc"),
            params=[Param.from_dict(p) for p in data.get("params") or []],
            return_type=_text(data, "return_type"),
            deprecated=_text(data, "deprecated"),
        )


@dataclass
class Field:
    """A struct or provider field, or a global value."""

    name: str
    type: str = ""
    doc: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        _put_if(result, "type", self.type)
        _put_if(result, "doc", self.doc)
        return result

    @classmethod
    def from_dict(cls, data: Any) -> Field:
        data = _mapping(data, "field")
        return cls(name=_text(data, "name"), type=_text(data, "type"), doc=_text(data, "doc"))


@dataclass
class TypeDef:
    """A type definition with its fields and methods."""

    name: str
    doc: str = ""
    fields: list[Field] = field(default_factory=list)
    methods: list[Signature] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        _put_if(result, "doc", self.doc)
        if self.fields:
            result["fields"] = [f.to_dict() for f in self.fields]
        if self.methods:
            result["methods"] = [m.to_dict() for m in self.methods]
        return result

    @classmethod
    def from_dict(cls, data: Any) -> TypeDef:
        data = _mapping(data, "type")
        return cls(
            name=_text(data, "name"),
            doc=_text(data, "doc"),
            fields=[Field.from_dict(f) for f in data.get("fields") or []],
            methods=[Signature.from_dict(m) for m in data.get("methods") or []],
        )


@dataclass
class Builtins:
    """All builtin definitions for one dialect and file kind."""

    functions: list[Signature] = field(default_factory=list)
    types: list[TypeDef] = field(default_factory=list)
    globals: list[Field] = field(default_factory=list)

    def merge(self, other: Builtins) -> None:
        """Append everything from another set of builtins to this one."""
        self.functions.extend(other.functions)
        self.types.extend(other.types)
        self.globals.extend(other.globals)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.functions:
            result["functions"] = [f.to_dict() for f in self.functions]
        if self.types:
            result["types"] = [t.to_dict() for t in self.types]
        if self.globals:
            result["globals"] = [g.to_dict() for g in self.globals]
        return result

    @classmethod
    def from_dict(cls, data: Any) -> Builtins:
        data = _mapping(data, "builtins")
        return cls(
            functions=[Signature.from_dict(f) for f in data.get("functions") or []],
            types=[TypeDef.from_dict(t) for t in data.get("types") or []],
            globals=[Field.from_dict(g) for g in data.get("globals") or []],
        )


class Provider(ABC):
    """Supplies builtin definitions for dialects.

    A provider that does not support a dialect or kind raises LookupError,
    ValueError or OSError.
    """

    @abstractmethod
    def builtins(self, dialect: str, kind: FileKind) -> Builtins:
        """Builtin definitions for a dialect and file kind."""

    @abstractmethod
    def supported_dialects(self) -> list[str]:
        """The dialects this provider knows about."""


class FunctionProvider(Provider):
    """A provider backed by a single function."""

    def __init__(self, func: Callable[[str, FileKind], Builtins]) -> None:
        self._func = func

    def builtins(self, dialect: str, kind: FileKind) -> Builtins:
        return self._func(dialect, kind)

    def supported_dialects(self) -> list[str]:
        return []


class ChainProvider(Provider):
    """Merges the builtins of several providers, in order."""

    def __init__(self, *args: Provider) -> None:
        self._providers = list(args)

    def builtins(self, dialect: str, kind: FileKind) -> Builtins:
        """Merged builtins; providers that cannot serve the request are skipped."""
        result = Builtins()
        for provider in self._providers:
            try:
                found = provider.builtins(dialect, kind)
            except (LookupError, ValueError, OSError):
                continue
            result.merge(found)
        return result

    def supported_dialects(self) -> list[str]:
        """Every dialect of every provider, without duplicates, in first-seen order."""
        seen = dict.fromkeys(
            dialect for provider in self._providers for dialect in provider.supported_dialects()
        )
        return list(seen)