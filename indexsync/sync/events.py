"""
Lifecycle event models.

Defines the entity kinds and event types pushed by the notification
collaborator and the event structure the incremental synchronizer consumes.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from ..models.documents import ID_FIELD


class EventType(Enum):
    """Lifecycle transitions of an entity"""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class EntityKind(Enum):
    """Entity kinds with index representation"""
    PROFILE = "profile"
    ACTIVITY = "activity"
    MESSAGE = "message"
    SKILL = "skill"     # Skill added to or removed from a profile


class LifecycleEvent(BaseModel):
    """
    A single entity lifecycle notification.

    ``payload`` is the already mapped document for profile, activity and
    message events. Skill events carry only the affected user in
    ``properties`` (or as ``payload["userId"]``); the profile is re-read
    from the source-of-record.
    """

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType
    kind: EntityKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    properties: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)

    @model_validator(mode='after')
    def validate_target(self) -> 'LifecycleEvent':
        if not self.document_id:
            raise ValueError(f"{self.kind.value} event has no target id")
        return self

    @property
    def owner_id(self) -> Optional[str]:
        """User on whose behalf the event was raised"""
        for key in ('ownerId', 'userId'):
            value = self.properties.get(key)
            if value:
                return str(value)
        if self.kind == EntityKind.SKILL and self.payload.get('userId'):
            return str(self.payload['userId'])
        return None

    @property
    def document_id(self) -> Optional[str]:
        """Id of the index document the event targets"""
        if self.kind == EntityKind.SKILL:
            return self.owner_id
        doc_id = self.payload.get(ID_FIELD)
        return str(doc_id) if doc_id else None

    @classmethod
    def created(cls, kind: EntityKind, payload: Dict[str, Any], **properties) -> 'LifecycleEvent':
        """Create an entity creation event"""
        return cls(event_type=EventType.CREATED, kind=kind, payload=payload, properties=properties)

    @classmethod
    def updated(cls, kind: EntityKind, payload: Dict[str, Any], **properties) -> 'LifecycleEvent':
        """Create an entity update event"""
        return cls(event_type=EventType.UPDATED, kind=kind, payload=payload, properties=properties)

    @classmethod
    def deleted(cls, kind: EntityKind, payload: Dict[str, Any], **properties) -> 'LifecycleEvent':
        """Create an entity deletion event"""
        return cls(event_type=EventType.DELETED, kind=kind, payload=payload, properties=properties)

    @classmethod
    def skill_changed(cls, user_id: str, **properties) -> 'LifecycleEvent':
        """Create a skill added/removed event; both re-index the profile"""
        return cls(
            event_type=EventType.UPDATED,
            kind=EntityKind.SKILL,
            properties={'userId': user_id, **properties}
        )

    def __str__(self) -> str:
        return f"{self.kind.value}.{self.event_type.value}({self.document_id})"
