"""Declarative base for models."""

from __future__ import annotations

import inspect
import sys
import typing
from typing import TYPE_CHECKING, Any, ClassVar, Self, get_type_hints

from chainorm.fields import ColumnInfo, Mapped

if TYPE_CHECKING:
    from chainorm.config import Config
    from chainorm.mutation import MutationBuilder
    from chainorm.query import QueryBuilder


class ModelMeta(type):
    """Metaclass for models that processes field definitions."""

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> ModelMeta:
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Skip processing for the Base class itself
        if name == "Base" and not any(isinstance(b, ModelMeta) for b in bases):
            return cls

        # Only an explicit __tablename__ is kept here; derived names depend on
        # the configured table prefix and are resolved by the metadata cache.
        cls.__tablename__ = namespace.get("__tablename__")  # type: ignore[attr-defined]

        hints = _class_annotations(cls)
        columns: dict[str, ColumnInfo] = {}

        # Annotated fields, base classes first, in declaration order
        for attr_name, hint in hints.items():
            if attr_name.startswith("_") or _is_classvar(hint):
                continue
            declared = _find_declared(cls, attr_name)
            if declared is None and not _is_mapped(hint):
                continue
            python_type, is_nullable = _extract_mapped_type(hint)
            template = declared or ColumnInfo(python_type=python_type, nullable=is_nullable)
            column = template.bind(cls, attr_name)
            if column.python_type is None:
                column.python_type = python_type
            if is_nullable and not column.primary_key:
                column.nullable = True
            columns[attr_name] = column

        # Columns declared without an annotation
        for attr_name, attr_value in namespace.items():
            if attr_name.startswith("_") or attr_name in columns:
                continue
            if isinstance(attr_value, ColumnInfo):
                columns[attr_name] = attr_value.bind(cls, attr_name)

        # Each class owns its accessors, so User.name and Admin.name differ
        for attr_name, column in columns.items():
            setattr(cls, attr_name, column)

        cls.__columns__ = columns  # type: ignore[attr-defined]
        cls.__primary_key__ = None  # type: ignore[attr-defined]
        for col_name, col_info in columns.items():
            if col_info.primary_key:
                cls.__primary_key__ = col_name  # type: ignore[attr-defined]
                break

        return cls


def _class_annotations(cls: type) -> dict[str, Any]:
    """Collect field annotations across the MRO, base classes first."""
    module = sys.modules.get(cls.__module__, None)
    globalns = dict(getattr(module, "__dict__", {})) if module else {}
    globalns.setdefault("Mapped", Mapped)
    globalns.setdefault("ClassVar", ClassVar)
    globalns.setdefault("Any", Any)
    globalns.setdefault("ColumnInfo", ColumnInfo)
    try:
        return get_type_hints(cls, globalns=globalns, localns={})
    except (NameError, TypeError):
        pass

    # Unresolvable forward references: fall back to the raw annotations
    hints: dict[str, Any] = {}
    for klass in reversed(cls.__mro__):
        if klass is object:
            continue
        try:
            hints.update(inspect.get_annotations(klass))
        except NameError:
            continue
    return hints


def _find_declared(cls: type, attr_name: str) -> ColumnInfo | None:
    """Find a ColumnInfo declared for a field on the class or its bases."""
    for klass in cls.__mro__:
        value = klass.__dict__.get(attr_name)
        if isinstance(value, ColumnInfo):
            return value
    return None


def _is_mapped(hint: Any) -> bool:
    if isinstance(hint, str):
        return hint.startswith("Mapped")
    return hint is Mapped or typing.get_origin(hint) is Mapped


def _is_classvar(hint: Any) -> bool:
    if isinstance(hint, str):
        return hint.startswith("ClassVar")
    return hint is ClassVar or typing.get_origin(hint) is ClassVar


def _extract_mapped_type(hint: Any) -> tuple[type | None, bool]:
    """Extract the inner type from a Mapped[T] annotation and its nullability."""
    if isinstance(hint, str):
        return None, "None" in hint
    if typing.get_origin(hint) is Mapped:
        args = typing.get_args(hint)
        hint = args[0] if args else None
    args = typing.get_args(hint)
    if args and type(None) in args:
        non_none = [a for a in args if a is not type(None)]
        inner = non_none[0] if len(non_none) == 1 else None
        return (inner if isinstance(inner, type) else None), True
    return (hint if isinstance(hint, type) else None), False


class Base(metaclass=ModelMeta):
    """Base class for all models.

    Fields are read and written as plain attributes. The mutation helpers
    build a fresh statement for every call, so one instance can be saved,
    updated and deleted any number of times.

    Example:
        >>> class User(Base):
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     username: Mapped[str]
        ...     password: Mapped[str | None]
        >>>
        >>> user = User(username="alice", password="secret")
        >>> await user.save()
        >>> rows = await User.query().where(User.username, "alice").all()
    """

    __tablename__: ClassVar[str | None]
    __columns__: ClassVar[dict[str, ColumnInfo]]
    __primary_key__: ClassVar[str | None]

    def __init__(self, **kwargs: Any) -> None:
        """Initialize a model instance with the given field values."""
        columns = self.__columns__
        for key, value in kwargs.items():
            if key not in columns:
                raise TypeError(f"Unknown field for {type(self).__name__}: {key}")
            setattr(self, key, value)

        # Set defaults only for fields that were not provided.
        for col_name, col_info in columns.items():
            if col_name in kwargs:
                continue
            if col_info.default is not None:
                default = col_info.default() if callable(col_info.default) else col_info.default
                setattr(self, col_name, default)
            else:
                setattr(self, col_name, None)

    def __repr__(self) -> str:
        pk = self.__primary_key__
        if pk:
            return f"<{self.__class__.__name__} {pk}={getattr(self, pk)!r}>"
        return f"<{self.__class__.__name__}>"

    def to_dict(self) -> dict[str, Any]:
        """Convert model instance to a field-name keyed dictionary."""
        return {col_name: getattr(self, col_name) for col_name in self.__columns__}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create a model instance from a dictionary of field values."""
        return cls(**{k: v for k, v in data.items() if k in cls.__columns__})

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Self:
        """Create a model instance from a result row keyed by column name.

        Column names are matched case-insensitively because drivers differ
        in the case they report.
        """
        by_column = {col.column.lower(): name for name, col in cls.__columns__.items()}  # type: ignore[union-attr]
        instance = object.__new__(cls)
        for col_name in cls.__columns__:
            object.__setattr__(instance, col_name, None)
        for key, value in row.items():
            field_name = by_column.get(str(key).lower())
            if field_name is not None:
                setattr(instance, field_name, value)
        return instance

    # ========== Query / mutation helpers ==========

    @classmethod
    def query(cls, *, config: Config | None = None) -> QueryBuilder[Self]:
        """Open a query bound to this model.

        Example:
            >>> await User.query().gt(User.age, 18).order("id desc").all()
        """
        from chainorm.query import QueryBuilder

        return QueryBuilder(cls, config=config)

    def _mutation(self, config: Config | None) -> MutationBuilder[Self]:
        from chainorm.mutation import MutationBuilder

        return MutationBuilder(type(self), config=config)

    async def save(self, *, config: Config | None = None) -> Any:
        """Insert this instance and return the generated primary key."""
        return await self._mutation(config).save(self)

    async def update(
        self, *, allow_unconditional: bool = False, config: Config | None = None
    ) -> int:
        """Update the row identified by this instance's primary key.

        Only non-null fields are written.
        """
        return await self._mutation(config).update_by_model(
            self, allow_unconditional=allow_unconditional
        )

    async def update_by_id(self, id: Any, *, config: Config | None = None) -> int:
        """Write this instance's non-null fields to the row with the given key."""
        return await self._mutation(config).update_by_id(self, id)

    async def delete(
        self, *, allow_unconditional: bool = False, config: Config | None = None
    ) -> int:
        """Delete rows matching every non-null field of this instance."""
        return await self._mutation(config).delete_by_model(
            self, allow_unconditional=allow_unconditional
        )

    def set(self, column: str | ColumnInfo, value: Any, *, config: Config | None = None) -> MutationBuilder[Self]:
        """Start an UPDATE on this model's table.

        Example:
            >>> await user.set(User.password, "new").where(User.id, 1).update()
        """
        return self._mutation(config).set(column, value)

    def where(self, statement: str | ColumnInfo, value: Any, *, config: Config | None = None) -> MutationBuilder[Self]:
        """Start an UPDATE or DELETE on this model's table with a condition."""
        return self._mutation(config).where(statement, value)
