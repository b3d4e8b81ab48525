"""Data models for cluster hosts."""

import re

from pydantic import BaseModel, Field, IPvAnyAddress, field_validator, model_validator


class Node(BaseModel):
    """A host taking part in cluster assembly."""

    name: str
    address: str
    internal_address: IPvAnyAddress
    port: int = 22
    user: str = "root"
    password: str | None = None
    private_key_path: str | None = None
    arch: str = "amd64"
    is_master: bool = False
    is_worker: bool = False
    labels: dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the node name follows DNS naming conventions."""
        if not v:
            raise ValueError("name cannot be empty")
        if len(v) > 253:
            raise ValueError("name cannot exceed 253 characters")
        # RFC 1123 hostname validation
        hostname_pattern = re.compile(
            r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$", re.IGNORECASE
        )
        if not hostname_pattern.match(v):
            raise ValueError(
                f"name '{v}' must contain only alphanumeric characters, "
                "hyphens, and dots, and cannot start or end with a hyphen"
            )
        return v

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate address is not empty."""
        if not v:
            raise ValueError("address cannot be empty")
        return v

    @field_validator("arch")
    @classmethod
    def validate_arch(cls, v: str) -> str:
        """Validate arch is a supported binary architecture."""
        allowed = ["amd64", "arm64"]
        if v not in allowed:
            raise ValueError(f"arch must be one of {allowed}, got '{v}'")
        return v

    @model_validator(mode="after")
    def validate_roles(self) -> "Node":
        """A node must be a master, a worker, or both."""
        if not (self.is_master or self.is_worker):
            raise ValueError(f"node '{self.name}' must have at least one role")
        return self

    @property
    def roles(self) -> list[str]:
        roles = []
        if self.is_master:
            roles.append("master")
        if self.is_worker:
            roles.append("worker")
        return roles
