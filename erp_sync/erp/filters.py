"""OData `$filter` expression helpers for ERP queries."""
from typing import Iterable


def escape(value) -> str:
    """Escapes single quotes for an OData string literal."""
    return str(value).replace("'", "''")


def equals(field: str, value) -> str:
    return f"{field} eq '{escape(value)}'"


def or_equals(field: str, values: Iterable) -> str:
    return " or ".join(equals(field, value) for value in values)


def and_filter(*conditions: str) -> str:
    return " and ".join(conditions)


def or_filter(*conditions: str) -> str:
    return "(" + " or ".join(conditions) + ")"


def contains(field: str, value) -> str:
    return f"contains({field}, '{escape(value)}')"


def entity(collection: str, key) -> str:
    """Endpoint for a single entity: Orders(12) or Items('SKU-1')."""
    if isinstance(key, int):
        return f"{collection}({key})"
    return f"{collection}('{escape(key)}')"
