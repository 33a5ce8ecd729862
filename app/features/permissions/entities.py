"""
Static descriptor table of the entity types guarded by the permission engine.

Each entry maps a field to the access levels at which it is public. Fields
declared ``None`` still get permission rows, they simply stay AUTHENTICATED
until a policy grants them to roles.
"""
from typing import Dict, Mapping, Optional

from app.features.permissions.exceptions import UnknownEntityType
from app.features.permissions.fields import EntityDescriptor


ENTITY_DESCRIPTORS: Dict[str, Dict[str, Optional[str]]] = {
    "Course": {
        "advanced_at": "read",
        "appled_at": None,
        "completed_at": "read",
        "created_at": "read",
        "description": "create/read/update",
        "enrolled_at": None,
        "id": "read",
        "name": "create/read",
        "number": "read/update",
        "status": "read/update",
        "study_id": "create/read",
        "topiced_at": None,
        "updated_at": "read",
        "user_id": "create/read",
    },
    "Email": {
        "created_at": None,
        "id": None,
        "public": None,
        "type": None,
        "user_id": None,
        "updated_at": None,
        "value": None,
        "verified_at": None,
    },
    "Label": {
        "color": "create/read/update",
        "created_at": "read",
        "description": "create/read/update",
        "id": "read",
        "is_default": "read",
        "labelable_id": None,
        "labeled_at": None,
        "name": "create/read",
        "study_id": "create/read",
        "updated_at": "read",
    },
    "Lesson": {
        "body": "read",
        "created_at": "read",
        "id": "read",
        "number": "read",
        "published_at": "read",
        "study_id": "read",
        "study_name": None,
        "title": "read",
        "updated_at": "read",
        "user_id": "read",
        "user_login": None,
    },
    "LessonComment": {
        "body": "create/read/update",
        "created_at": "read",
        "id": "read",
        "lesson_id": "create/read",
        "published_at": "read/update",
        "study_id": "create/read",
        "updated_at": "read",
        "user_id": "create/read",
    },
    "Study": {
        "advanced_at": "read",
        "appled_at": "read",
        "created_at": "read",
        "description": "read",
        "enrolled_at": "read",
        "id": "read",
        "name": "read",
        "updated_at": "read",
        "user_id": "read",
        "user_login": "read",
    },
    "Topic": {
        "created_at": "read",
        "description": "create/read/update",
        "id": "read",
        "name": "create/read",
        "topicable_id": None,
        "topiced_at": None,
        "updated_at": "read",
    },
    "User": {
        "bio": "read",
        "created_at": "read",
        "email": None,
        "id": "read",
        "login": "create/read",
        "name": "read",
        "password": None,
        "primary_email": "create",
        "updated_at": "read",
    },
    "UserAsset": {
        "asset_id": "create/read",
        "created_at": "read",
        "id": "read",
        "key": "read",
        "name": "create/read/update",
        "original_name": "read",
        "published_at": "read",
        "size": "read",
        "study_id": "create/read",
        "subtype": "read",
        "type": "read",
        "updated_at": "read",
        "user_id": "create/read",
    },
    "UserEmail": {
        "created_at": None,
        "email_id": None,
        "type": None,
        "user_id": None,
        "updated_at": None,
        "verified_at": None,
    },
}


def get_descriptor(
    entity_type: str,
    descriptors: Optional[Mapping[str, EntityDescriptor]] = None,
) -> EntityDescriptor:
    table = ENTITY_DESCRIPTORS if descriptors is None else descriptors
    try:
        return table[entity_type]
    except KeyError:
        raise UnknownEntityType(entity_type) from None
