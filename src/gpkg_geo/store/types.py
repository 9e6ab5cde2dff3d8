"""
Attribute binding <-> GeoPackage storage type mapping.

A binding is whatever the caller uses to describe an attribute's type:
a Python class, a pyarrow DataType, or one of the simple type names the
feature layer uses ("string", "int64", "double", ...).
"""

import datetime
import decimal

import pyarrow as pa

from .exceptions import SchemaValidationError

# GeoPackage 1.2 table 1 data types
STORAGE_TYPES = {
    "BOOLEAN",
    "TINYINT",
    "SMALLINT",
    "MEDIUMINT",
    "INT",
    "INTEGER",
    "FLOAT",
    "DOUBLE",
    "REAL",
    "TEXT",
    "BLOB",
    "DATE",
    "DATETIME",
}

_PYTHON_TYPES = [
    # bool before int: bool is an int subclass
    (bool, "BOOLEAN"),
    (int, "INTEGER"),
    (float, "DOUBLE"),
    (decimal.Decimal, "DOUBLE"),
    (str, "TEXT"),
    (bytes, "BLOB"),
    (bytearray, "BLOB"),
    # datetime before date: datetime is a date subclass
    (datetime.datetime, "DATETIME"),
    (datetime.date, "DATE"),
]

_SIMPLE_TYPES = {
    "string": "TEXT",
    "str": "TEXT",
    "text": "TEXT",
    "int8": "TINYINT",
    "int16": "SMALLINT",
    "int32": "MEDIUMINT",
    "int64": "INTEGER",
    "int": "INTEGER",
    "integer": "INTEGER",
    "float": "FLOAT",
    "float32": "FLOAT",
    "double": "DOUBLE",
    "float64": "DOUBLE",
    "bool": "BOOLEAN",
    "boolean": "BOOLEAN",
    "date": "DATE",
    "datetime": "DATETIME",
    "timestamp": "DATETIME",
    "binary": "BLOB",
    "bytes": "BLOB",
    "blob": "BLOB",
}


def _encode_arrow_type(arrow_type: pa.DataType) -> str:
    if pa.types.is_boolean(arrow_type):
        return "BOOLEAN"
    if pa.types.is_int8(arrow_type) or pa.types.is_uint8(arrow_type):
        return "TINYINT"
    if pa.types.is_int16(arrow_type) or pa.types.is_uint16(arrow_type):
        return "SMALLINT"
    if pa.types.is_int32(arrow_type):
        return "MEDIUMINT"
    if pa.types.is_integer(arrow_type):
        return "INTEGER"
    if pa.types.is_float16(arrow_type) or pa.types.is_float32(arrow_type):
        return "FLOAT"
    if pa.types.is_floating(arrow_type) or pa.types.is_decimal(arrow_type):
        return "DOUBLE"
    if pa.types.is_string(arrow_type) or pa.types.is_large_string(arrow_type):
        return "TEXT"
    if (
        pa.types.is_binary(arrow_type)
        or pa.types.is_large_binary(arrow_type)
        or pa.types.is_fixed_size_binary(arrow_type)
    ):
        return "BLOB"
    if pa.types.is_date(arrow_type):
        return "DATE"
    if pa.types.is_timestamp(arrow_type):
        return "DATETIME"
    raise SchemaValidationError(f"No GeoPackage storage type for {arrow_type}")


def encode_type(binding) -> str:
    """Map an attribute binding to a GeoPackage storage type name."""
    if isinstance(binding, pa.DataType):
        return _encode_arrow_type(binding)

    if isinstance(binding, type):
        for python_type, storage_type in _PYTHON_TYPES:
            if issubclass(binding, python_type):
                return storage_type
        raise SchemaValidationError(
            f"No GeoPackage storage type for {binding.__name__}"
        )

    if isinstance(binding, str):
        key = binding.strip()
        if key.upper() in STORAGE_TYPES:
            return key.upper()
        # TEXT(n) / BLOB(n) size-limited forms
        if key.upper().startswith(("TEXT(", "BLOB(")) and key.endswith(")"):
            return key.upper()
        if key.lower() in _SIMPLE_TYPES:
            return _SIMPLE_TYPES[key.lower()]

    raise SchemaValidationError(f"No GeoPackage storage type for {binding!r}")


def arrow_type(storage_type: str) -> pa.DataType:
    """Map a declared GeoPackage column type to the Arrow type used on read."""
    declared = (storage_type or "").upper()
    if declared == "BOOLEAN":
        return pa.bool_()
    if declared in ("TINYINT", "SMALLINT", "MEDIUMINT", "INT", "INTEGER"):
        return pa.int64()
    if declared in ("FLOAT", "DOUBLE", "REAL"):
        return pa.float64()
    if declared.startswith("BLOB"):
        return pa.large_binary()
    # TEXT, DATE, DATETIME (ISO text) and anything undeclared
    return pa.string()
