"""FieldMap: photo field extraction and dynamic field mapping service."""

__version__ = "0.1.0"
