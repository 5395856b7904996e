import enum

from sqlalchemy import Enum
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def enum_column_type(enum_cls: type[enum.Enum]) -> Enum:
    """
    Store enums as their string values in a plain VARCHAR (no native PG enum),
    but hand enum members back to Python.
    """
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
