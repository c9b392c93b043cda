"""
Mapping of dataclass records onto table columns.

A record's public dataclass fields become columns, in declaration order.  Each
field may carry a tag in its metadata (see `column()`) of the form

    "<column name>[,flag[,flag...]]"

An empty column name is inferred from the attribute name (`FourPointFive`
becomes `four_point_five`), and a column name of `-` excludes the field.
Recognized flags:

    primary   the table's primary key; never inserted or updated.  Only the
              first field flagged this way counts.
    readonly  selected, but never inserted or updated
    noinsert  left out of INSERT statements
    noupdate  left out of UPDATE statements

Unrecognized flags are ignored.  Fields whose names start with an underscore
are never mapped.
"""
import dataclasses
import logging
import sys
import typing
from collections.abc import Callable
from dataclasses import dataclass
from types import NoneType, UnionType
from typing import Any

from magicsql.exceptions import ConfigurationError
from magicsql.naming import to_underscore
from magicsql.nullable import NullableField, zero_value
from magicsql.sql import build_insert_sql, build_update_sql

logger = logging.getLogger(__name__)

__all__ = [
    'TAG_KEY',
    'ConfigTags',
    'FieldBinding',
    'MagicTable',
    'column',
]

TAG_KEY = 'sql'

ConfigTags = dict[str, str]


def column(tag: str = '', **kwargs: Any) -> Any:
    """Declare a dataclass field carrying a column tag.

    Any other keyword arguments go straight to `dataclasses.field()`.

    Examples
        @dataclass
        class Foo:
            id: int = column(',primary', default=0)
            three: bool = column('tree', default=False)
            five: int = column('-', default=0)
    """
    metadata = dict(kwargs.pop('metadata', None) or {})
    metadata[TAG_KEY] = tag
    return dataclasses.field(metadata=metadata, **kwargs)


@dataclass(slots=True)
class FieldBinding:
    """One mapped column and the write policy of its attribute."""
    name: str                   # Column name
    attr: str                   # Attribute name on the record
    kind: Any                   # Declared attribute type, Optional unwrapped
    no_insert: bool = False
    no_update: bool = False

    @property
    def insertable(self) -> bool:
        return not self.no_insert

    @property
    def updatable(self) -> bool:
        return not self.no_update


def _unwrap_optional(hint: Any) -> Any:
    """Reduce `X | None` and `Optional[X]` to `X`.
    """
    if typing.get_origin(hint) in {typing.Union, UnionType}:
        args = [arg for arg in typing.get_args(hint) if arg is not NoneType]
        if len(args) == 1:
            return args[0]
    return hint


def _resolve_hint(rtype: type, name: str, hint: str) -> Any:
    """Evaluate one string annotation the way `typing.get_type_hints` would.

    Returns the string unchanged when it names something not importable at
    runtime, e.g. a `TYPE_CHECKING`-only import.
    """
    module = sys.modules.get(rtype.__module__)
    globalns = vars(module) if module is not None else {}
    try:
        return eval(hint, globalns, dict(vars(rtype)))
    except (NameError, AttributeError) as err:
        logger.warning(f'Cannot resolve type of {rtype.__name__}.{name} ({hint!r}): {err}')
        return hint


def _field_kinds(rtype: type) -> dict[str, Any]:
    """Resolve the declared type of every dataclass field on `rtype`.

    Fields are resolved one by one when the class as a whole cannot be, so a
    single unresolvable annotation only affects its own field.
    """
    try:
        hints = typing.get_type_hints(rtype)
    except NameError as err:
        logger.debug(f'Resolving type hints of {rtype.__name__} field by field: {err}')
        hints = {}

    kinds = {}
    for f in dataclasses.fields(rtype):
        hint = hints.get(f.name, f.type)
        if isinstance(hint, str):
            hint = _resolve_hint(rtype, f.name, hint)
        kinds[f.name] = _unwrap_optional(hint)
    return kinds


class MagicTable:
    """A table name tied to a record type, with its column bindings.

    `obj` may be the dataclass itself, an instance of it, or a zero-argument
    factory returning an instance.  A factory is also used to allocate fresh
    records when reading rows.
    """

    def __init__(self, name: str, obj: Any) -> None:
        self.name = name
        self.generator: Callable[[], Any] | None = None

        if isinstance(obj, type):
            self.rtype = obj
        elif dataclasses.is_dataclass(obj):
            self.rtype = type(obj)
        elif callable(obj):
            self.generator = obj
            self.rtype = type(obj())
        else:
            raise TypeError(f'Cannot map {obj!r}: expected a dataclass, instance or factory')

        if not dataclasses.is_dataclass(self.rtype):
            raise TypeError(f'{self.rtype.__name__} is not a dataclass')

        self.kinds = _field_kinds(self.rtype)
        self.bindings: list[FieldBinding] = []
        self.primary_key: FieldBinding | None = None
        self.configure()

    def __repr__(self) -> str:
        return f'MagicTable({self.name!r}, {self.rtype.__name__}, columns={self.field_names()})'

    def configure(self, conf: ConfigTags | None = None) -> None:
        """Build the column bindings from field tags.

        When `conf` is given, its entries are used in place of every field's
        own tag; fields missing from it are mapped with an inferred name.
        Previous bindings and primary key are discarded.
        """
        bindings: list[FieldBinding] = []
        primary_key = None
        seen: set[str] = set()

        for f in dataclasses.fields(self.rtype):
            if f.name.startswith('_'):
                continue

            if conf is None:
                tag = f.metadata.get(TAG_KEY, '')
            else:
                tag = conf.get(f.name, '')

            parts = tag.split(',')
            if parts[0] == '-':
                continue

            name = parts[0] or to_underscore(f.name)
            if name in seen:
                raise ConfigurationError(f'duplicate column {name} in {self.rtype.__name__}')
            seen.add(name)

            binding = FieldBinding(name, f.name, self.kinds[f.name])
            for flag in parts[1:]:
                flag = flag.strip()
                if flag == 'primary':
                    if primary_key is None and isinstance(binding.kind, str):
                        raise ConfigurationError(
                            f'cannot resolve type {binding.kind!r} of primary key {f.name} in {self.rtype.__name__}')
                    if primary_key is None:
                        binding.no_insert = True
                        binding.no_update = True
                        primary_key = binding
                elif flag == 'readonly':
                    binding.no_insert = True
                    binding.no_update = True
                elif flag == 'noinsert':
                    binding.no_insert = True
                elif flag == 'noupdate':
                    binding.no_update = True
            bindings.append(binding)

        self.bindings = bindings
        self.primary_key = primary_key
        logger.debug(f'Configured {self!r}')

    def field_names(self) -> list[str]:
        """Return all mapped column names in mapping order.
        """
        return [b.name for b in self.bindings]

    def scan_struct(self, dest: Any) -> list[NullableField]:
        """Return one scan target per column, writing into `dest`.
        """
        return [NullableField(dest, b.attr, b.kind) for b in self.bindings]

    def new_record(self) -> Any:
        """Allocate a fresh record, zero-filling fields that have no default.
        """
        if self.generator is not None:
            return self.generator()

        kwargs = {}
        for f in dataclasses.fields(self.rtype):
            if not f.init:
                continue
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                kwargs[f.name] = zero_value(self.kinds[f.name])
        return self.rtype(**kwargs)

    def is_new(self, obj: Any) -> bool:
        """Check whether `obj`'s primary key still holds its zero value.
        """
        value = getattr(obj, self.primary_key.attr)
        return value is None or value == zero_value(self.primary_key.kind)

    def insert_sql(self, returning: bool = False) -> str:
        """Return the INSERT statement for this table.

        The primary key and noinsert/readonly columns are left out, so the
        database assigns them.  With `returning`, the statement also returns
        the new primary key.
        """
        key = self.primary_key.name if returning and self.primary_key is not None else ''
        return build_insert_sql(self.name, [b.name for b in self.bindings if b.insertable], returning=key)

    def insert_args(self, source: Any) -> list[Any]:
        """Return `source`'s values matching the columns of `insert_sql()`.
        """
        return [getattr(source, b.attr) for b in self.bindings if b.insertable]

    def update_sql(self) -> str:
        """Return the UPDATE statement for this table, or '' without a primary key.
        """
        if self.primary_key is None:
            return ''
        columns = [b.name for b in self.bindings if b.updatable]
        return build_update_sql(self.name, columns, self.primary_key.name)

    def update_args(self, source: Any) -> list[Any] | None:
        """Return `source`'s values for `update_sql()`, primary key last.

        Returns None without a primary key.
        """
        if self.primary_key is None:
            return None
        args = [getattr(source, b.attr) for b in self.bindings if b.updatable]
        args.append(getattr(source, self.primary_key.attr))
        return args
