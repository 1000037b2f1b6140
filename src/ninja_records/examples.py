"""Sample record types."""

from __future__ import annotations

from ninja_records.mapper import DefaultClaims


class ExampleObject(DefaultClaims):
    title: str = ""

    @classmethod
    def collection(cls) -> str:
        return "example_objects"
