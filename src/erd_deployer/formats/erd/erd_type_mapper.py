"""
ERD Type Mapper.

This module maps the type tokens written in a diagram (``string``,
``int``, ``choice(a,b)``, ``lookup(Account)`` ...) onto target-store column
types, and upgrades plain text columns to semantic types based on the
column name (``email`` -> Email, ``birthdate`` -> DateOnly).

Usage:
    from erd_deployer.formats.erd.erd_type_mapper import ERDTypeMapper

    mapper = ERDTypeMapper()
    mapping = mapper.map_type("choice(Open, Closed)")
    print(mapping.attribute_type)   # AttributeType.CHOICE
    print(mapping.choice_options)   # ('Open', 'Closed')
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .erd_models import AttributeType

logger = logging.getLogger(__name__)


# =============================================================================
# Primitive Type Mappings
# =============================================================================

ERD_TYPE_MAPPINGS: Dict[str, AttributeType] = {
    # Text
    "string": AttributeType.STRING,
    "varchar": AttributeType.STRING,
    "char": AttributeType.STRING,
    "text": AttributeType.MEMO,
    "memo": AttributeType.MEMO,

    # Numbers
    "int": AttributeType.INTEGER,
    "integer": AttributeType.INTEGER,
    "decimal": AttributeType.DECIMAL,
    "money": AttributeType.MONEY,
    "currency": AttributeType.MONEY,
    "float": AttributeType.DOUBLE,
    "double": AttributeType.DOUBLE,

    # Booleans
    "boolean": AttributeType.BOOLEAN,
    "bool": AttributeType.BOOLEAN,

    # Dates
    "datetime": AttributeType.DATETIME,
    "date": AttributeType.DATETIME,
    "timestamp": AttributeType.DATETIME,
    "dateonly": AttributeType.DATEONLY,

    # Identifiers
    "guid": AttributeType.UNIQUEIDENTIFIER,
    "uuid": AttributeType.UNIQUEIDENTIFIER,
    "uniqueidentifier": AttributeType.UNIQUEIDENTIFIER,

    # Formatted text / whole numbers
    "email": AttributeType.EMAIL,
    "phone": AttributeType.PHONE,
    "url": AttributeType.URL,
    "ticker": AttributeType.TICKER,
    "timezone": AttributeType.TIMEZONE,
    "language": AttributeType.LANGUAGE,
    "duration": AttributeType.DURATION,

    # Binary
    "file": AttributeType.FILE,
    "image": AttributeType.IMAGE,
}


# Column names that hold a calendar date rather than a point in time
DATE_ONLY_FIELDS: Tuple[str, ...] = (
    "birthdate",
    "dateofbirth",
    "dob",
    "startdate",
    "enddate",
    "duedate",
    "orderdate",
    "deliverydate",
    "hiredate",
    "expirydate",
    "createddate",
    "modifieddate",
)

_CHOICE_PATTERN = re.compile(r'^choice\(([^)]+)\)$', re.IGNORECASE)
_LOOKUP_PATTERN = re.compile(r'^lookup\(([^)]+)\)$', re.IGNORECASE)
_CHOICE_SET_PATTERN = re.compile(r'^(?:choiceset|optionset)\(([^)]+)\)$', re.IGNORECASE)
_PHONE_NAME_PATTERN = re.compile(r'phone|mobile|(?:^|_)tel(?:_|$)')
_URL_NAME_PATTERN = re.compile(r'url|website|link')


@dataclass(frozen=True)
class TypeMapping:
    """
    Result of mapping one diagram type token.

    Attributes:
        attribute_type: Target-store column type.
        original_type: The token as written.
        choice_options: Labels for ``choice(...)`` types.
        lookup_target: Entity name for ``lookup(...)`` types.
        choice_set: Global choice set named by ``choiceset(...)``.
        is_known: False when the token fell back to String.
    """
    attribute_type: AttributeType
    original_type: str
    choice_options: Tuple[str, ...] = ()
    lookup_target: Optional[str] = None
    choice_set: Optional[str] = None
    is_known: bool = True


class ERDTypeMapper:
    """
    Map diagram type tokens onto target-store column types.

    Unknown tokens map to String and are flagged with ``is_known=False``
    so the parser can surface an informational warning.
    """

    def map_type(self, type_token: str) -> TypeMapping:
        """
        Map a type token.

        Args:
            type_token: Type as written in the diagram.

        Returns:
            TypeMapping describing the column type.
        """
        token = type_token.strip()

        choice_match = _CHOICE_PATTERN.match(token)
        if choice_match:
            options = tuple(
                opt.strip() for opt in choice_match.group(1).split(',') if opt.strip()
            )
            return TypeMapping(AttributeType.CHOICE, token, choice_options=options)

        choice_set_match = _CHOICE_SET_PATTERN.match(token)
        if choice_set_match:
            return TypeMapping(
                AttributeType.CHOICE, token, choice_set=choice_set_match.group(1).strip()
            )

        lookup_match = _LOOKUP_PATTERN.match(token)
        if lookup_match:
            return TypeMapping(
                AttributeType.LOOKUP, token, lookup_target=lookup_match.group(1).strip()
            )

        mapped = ERD_TYPE_MAPPINGS.get(token.lower())
        if mapped is None:
            logger.debug(f"Unknown diagram type '{token}', defaulting to String")
            return TypeMapping(AttributeType.STRING, token, is_known=False)
        return TypeMapping(mapped, token)

    def apply_semantic_type(
        self,
        field_name: str,
        original_type: str,
        mapped_type: AttributeType,
    ) -> AttributeType:
        """
        Upgrade a column type based on its name.

        Only plain String columns are upgraded to Email/Phone/Url, and only
        date columns are narrowed to DateOnly.

        Args:
            field_name: Column name.
            original_type: Type token as written.
            mapped_type: Type produced by ``map_type``.

        Returns:
            The improved column type.
        """
        lowered = field_name.lower()

        if mapped_type == AttributeType.STRING:
            if "email" in lowered:
                return AttributeType.EMAIL
            if _PHONE_NAME_PATTERN.search(lowered):
                return AttributeType.PHONE
            if _URL_NAME_PATTERN.search(lowered):
                return AttributeType.URL

        is_date = original_type.lower() == "date" or mapped_type == AttributeType.DATETIME
        if is_date and any(field in lowered for field in DATE_ONLY_FIELDS):
            return AttributeType.DATEONLY

        return mapped_type


def format_display_name(name: str) -> str:
    """
    Turn a technical name into a display name.

    ``order_item`` -> ``Order Item``; ``first-name`` -> ``First Name``.
    """
    spaced = re.sub(r'[_-]', ' ', name.lower())
    return re.sub(r'\b\w', lambda m: m.group(0).upper(), spaced).strip()


def safe_name(name: str) -> str:
    """Lower-case a name and replace anything outside ``[a-z0-9_]`` with ``_``."""
    return re.sub(r'[^a-z0-9_]', '_', name.lower())
