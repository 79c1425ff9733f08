"""Static registry of tables that photo extractions may write into.

Adding a table is an explicit code change: add a ``SupportedTable`` member
and a ``TableDescriptor`` for it in ``_build_default_descriptors``. There is
no runtime discovery, so extracted data can never be routed to a table that
was not reviewed.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Type

from fieldmap.database.models import AddressRecord, Base


class SupportedTable(str, Enum):
    """Tables eligible for dynamic field extraction."""

    ADDRESS_RECORDS = "address_records"


@dataclass(frozen=True)
class ColumnInfo:
    """A writable physical column as exposed to the field builder."""

    key: str
    column: str
    label: str


@dataclass(frozen=True)
class TableDescriptor:
    """Typed-row description of one supported table.

    Attributes:
        table: Registry key
        model: ORM model class for the table
        overflow_attribute: Model attribute holding the schemaless overflow map
        columns: Canonical camelCase key -> physical column attribute
        aliases: Extra logical names -> canonical key
    """

    table: SupportedTable
    model: Type[Base]
    overflow_attribute: str
    columns: Mapping[str, str]
    aliases: Mapping[str, str] = field(default_factory=dict)

    def build_alias_index(self) -> Dict[str, str]:
        """Map every accepted logical name to its physical column."""
        index: Dict[str, str] = {}
        for key, column in self.columns.items():
            index[key] = column
            index[key[:1].upper() + key[1:]] = column
            index[column] = column
        for alias, key in self.aliases.items():
            index[alias] = self.columns[key]
        return index


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def humanize_column_key(key: str) -> str:
    """Format a camelCase key as a label: ``routerSerial`` -> ``Router Serial``."""
    words = _CAMEL_BOUNDARY.sub(" ", key).replace("_", " ").split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


class SchemaRegistry:
    """Immutable lookup from table name to its typed-column shape.

    Every method is total: unknown tables give empty results, never errors.
    Callers must read an absent column as "no typed column here", not as
    "the field does not exist".
    """

    def __init__(self, descriptors: Iterable[TableDescriptor]):
        tables: Dict[str, TableDescriptor] = {}
        indexes: Dict[str, Mapping[str, str]] = {}
        for descriptor in descriptors:
            name = descriptor.table.value
            tables[name] = descriptor
            indexes[name] = MappingProxyType(descriptor.build_alias_index())
        self._tables: Mapping[str, TableDescriptor] = MappingProxyType(tables)
        self._indexes: Mapping[str, Mapping[str, str]] = MappingProxyType(indexes)

    def is_supported_table(self, table: Optional[str]) -> bool:
        return table in self._tables

    def supported_tables(self) -> List[str]:
        return list(self._tables.keys())

    def descriptor(self, table: Optional[str]) -> Optional[TableDescriptor]:
        if table is None:
            return None
        return self._tables.get(table)

    def resolve_column(self, table: Optional[str], field_name: Optional[str]) -> Optional[str]:
        """Return the physical column for a logical field, or None."""
        if not table or not field_name:
            return None
        index = self._indexes.get(table)
        if index is None:
            return None
        return index.get(field_name)

    def known_columns(self, table: Optional[str]) -> FrozenSet[str]:
        descriptor = self.descriptor(table)
        if descriptor is None:
            return frozenset()
        return frozenset(descriptor.columns.values())

    def writable_columns(self, table: Optional[str]) -> List[ColumnInfo]:
        descriptor = self.descriptor(table)
        if descriptor is None:
            return []
        return [
            ColumnInfo(key=key, column=column, label=humanize_column_key(key))
            for key, column in descriptor.columns.items()
        ]

    def reserved_columns(self, table: Optional[str]) -> FrozenSet[str]:
        """Model columns that extraction must never touch directly."""
        descriptor = self.descriptor(table)
        if descriptor is None:
            return frozenset()
        model_columns = {column.key for column in descriptor.model.__table__.columns}
        return frozenset(model_columns - set(descriptor.columns.values()))


def _build_default_descriptors() -> List[TableDescriptor]:
    return [
        TableDescriptor(
            table=SupportedTable.ADDRESS_RECORDS,
            model=AddressRecord,
            overflow_attribute="extracted_data_extras",
            columns={
                "routerSerial": "router_serial",
                "routerMac": "router_mac",
                "routerModel": "router_model",
                "onuSerial": "onu_serial",
                "onuMac": "onu_mac",
                "onuModel": "onu_model",
            },
            aliases={
                "router_serial_number": "routerSerial",
                "router_mac_address": "routerMac",
                "onu_serial_number": "onuSerial",
                "onu_mac_address": "onuMac",
            },
        ),
    ]


_DEFAULT_REGISTRY = SchemaRegistry(_build_default_descriptors())


def default_registry() -> SchemaRegistry:
    """Process-wide registry built at import time."""
    return _DEFAULT_REGISTRY
