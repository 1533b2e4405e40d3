# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Base entity models with common fields and document mapping.
"""

from datetime import datetime
from typing import Any, Dict, Type, TypeVar
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from bson import ObjectId

E = TypeVar('E', bound='BaseEntity')


def generate_object_id() -> str:
    """Generate a new MongoDB ObjectId as string."""
    return str(ObjectId())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what pymongo returns on reads."""
    return datetime.utcnow()


class LedgerModel(BaseModel):
    """Base model for embedded documents stored with camelCase keys."""

    model_config = ConfigDict(
        # Accept snake_case names as well as camelCase aliases
        populate_by_name=True,
        alias_generator=to_camel,
        use_enum_values=True,
        validate_assignment=True
    )

    def to_document(self) -> Dict[str, Any]:
        """Serialize to a MongoDB sub-document."""
        return self.model_dump(by_alias=True)


class BaseEntity(LedgerModel):
    """Base entity with common fields for all stored documents."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        use_enum_values=True,
        validate_assignment=True,
        arbitrary_types_allowed=True
    )

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utcnow, description="Last update timestamp")
    schema_version: int = Field(default=1, description="Schema version for migrations")

    def to_document(self) -> Dict[str, Any]:
        """Serialize to a MongoDB document keyed by ``_id``."""
        document = self.model_dump(by_alias=True, exclude={'id'})
        document['_id'] = self.id
        return document

    @classmethod
    def from_document(cls: Type[E], document: Dict[str, Any]) -> E:
        """Build an entity from a MongoDB document."""
        data = dict(document)
        if '_id' in data:
            data['id'] = str(data.pop('_id'))
        return cls.model_validate(data)
