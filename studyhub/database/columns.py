"""
Column factories shared between tables. A `Column` object can only belong to
a single table, so these build a fresh one on every call.
"""

import enum

from sqlalchemy import Column, DateTime, Enum


def enum_column(enum_type: type[enum.Enum], **kwargs) -> Column:
    """
    Store an enum by its value (e.g. 'pending') rather than its name, so the
    raw column can be used in partial index predicates.
    """
    return Column(
        Enum(
            enum_type,
            values_callable=lambda members: [member.value for member in members],
            native_enum=False,
            length=16,
        ),
        nullable=False,
        **kwargs,
    )


def timestamp_column(nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)
