"""
Static policy description loaded at startup.

The file lists operations, each either public (its fields are opened to
EVERYONE) or role-scoped (its fields are granted to the listed roles):

    permissions:
      - operation: Read User
        public: true
        fields: [bio, login, name]
      - operation: Delete Lesson
        roles: [ADMIN, OWNER]

An empty or missing field list addresses every row of the operation.
"""
from pathlib import Path
from typing import Any, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from app.features.permissions.exceptions import PolicyError, UnknownEntityType, UnknownRole
from app.features.permissions.types import Operation, RoleName
from app.utils import get_logger


log = get_logger(__name__)


class PolicyEntry(BaseModel):
    """One operation of the policy file."""
    model_config = ConfigDict(extra="forbid")

    operation: str = Field(..., description='Operation such as "Read Lesson"')
    public: bool = Field(False, description="Open the fields to EVERYONE")
    roles: List[str] = Field(default_factory=list, description="Roles granted the fields")
    fields: List[str] = Field(default_factory=list, description="Fields; empty means all rows of the operation")

    @field_validator("operation")
    @classmethod
    def operation_is_valid(cls, v: str) -> str:
        try:
            return str(Operation.parse(v))
        except UnknownEntityType as e:
            raise ValueError(str(e)) from None

    @field_validator("roles")
    @classmethod
    def roles_are_known(cls, v: List[str]) -> List[str]:
        try:
            return [RoleName.parse(r).value for r in v]
        except UnknownRole as e:
            raise ValueError(str(e)) from None

    @field_validator("fields")
    @classmethod
    def fields_lowercase(cls, v: List[str]) -> List[str]:
        return [f.strip().lower() for f in v if f.strip()]

    @model_validator(mode="after")
    def public_or_role_scoped(self) -> "PolicyEntry":
        if self.public and self.roles:
            raise ValueError(f"{self.operation}: an entry is either public or role-scoped, not both")
        if not self.public and not self.roles:
            raise ValueError(f"{self.operation}: a role-scoped entry needs at least one role")
        return self

    def to_operation(self) -> Operation:
        return Operation.parse(self.operation)


class PolicyFile(BaseModel):
    permissions: List[PolicyEntry] = Field(default_factory=list)


def parse_policy(data: Any) -> PolicyFile:
    """Validate an already-decoded policy document."""
    if data is None:
        return PolicyFile()
    try:
        return PolicyFile.model_validate(data)
    except ValidationError as e:
        raise PolicyError(f"invalid permissions policy: {e}") from e


def load_policy(path: Union[str, Path], required: bool = True) -> Optional[PolicyFile]:
    """
    Read and validate the YAML policy file.

    Returns None when the file is missing and not required.

    Raises:
        PolicyError: the file is missing (when required), unreadable or invalid
    """
    path = Path(path)
    if not path.exists():
        if required:
            raise PolicyError(f"permissions policy not found: {path}")
        log.warning(f"Permissions policy {path} not found, keeping generated defaults")
        return None

    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise PolicyError(f"failed to read permissions policy {path}: {e}") from e

    policy = parse_policy(data)
    log.info(f"Loaded {len(policy.permissions)} policy entries from {path}")
    return policy
