"""
Identity models: local terminal identities and backend profiles
"""

import hashlib
import hmac
import os
import re
from pydantic import BaseModel, Field
from typing import Optional, Literal

UserRole = Literal["observer", "builder", "reflector", "steward"]
VALID_ROLES = ["observer", "builder", "reflector", "steward"]

GUEST_NAME = "guest"

_HASH_ITERATIONS = 120_000


class Permissions(BaseModel):
    can_create_nodes: bool = False
    can_link_nodes: bool = False
    can_edit_metadata: bool = False
    can_archive_nodes: bool = False
    can_tend_nodes: bool = False


def permissions_for(role: Optional[str], is_guest: bool = False) -> Permissions:
    """Account holders write; stewards also curate; guests only read."""
    if is_guest:
        return Permissions()
    steward = role == "steward"
    return Permissions(
        can_create_nodes=True,
        can_link_nodes=True,
        can_edit_metadata=steward,
        can_archive_nodes=steward,
        can_tend_nodes=True,
    )


def hash_password(password: str, salt: Optional[bytes] = None) -> str:
    salt = salt or os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _HASH_ITERATIONS)
    return f"{salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        salt_hex, digest_hex = stored.split("$", 1)
        salt = bytes.fromhex(salt_hex)
    except ValueError:
        return False
    candidate = hash_password(password, salt).split("$", 1)[1]
    return hmac.compare_digest(candidate, digest_hex)


class UserIdentity(BaseModel):
    """Local-first identity held by the terminal."""
    name: str
    role: str = ""
    password_hash: str = ""
    permissions: Permissions = Field(default_factory=Permissions)

    @classmethod
    def guest(cls) -> "UserIdentity":
        return cls(name=GUEST_NAME, role="observer", permissions=permissions_for("observer", is_guest=True))

    @classmethod
    def account(cls, name: str, password: str, role: str = "") -> "UserIdentity":
        return cls(name=name, role=role, password_hash=hash_password(password), permissions=permissions_for(role))

    @classmethod
    def from_record(cls, name: str, role: str = "", password_hash: str = "") -> "UserIdentity":
        """Rebuilds an identity from a stored row; permissions follow the role."""
        return cls(
            name=name,
            role=role,
            password_hash=password_hash,
            permissions=permissions_for(role, is_guest=name == GUEST_NAME),
        )

    @property
    def is_guest(self) -> bool:
        return self.name == GUEST_NAME

    def with_role(self, role: str) -> "UserIdentity":
        return self.model_copy(update={"role": role, "permissions": permissions_for(role, self.is_guest)})


class UserProfile(BaseModel):
    """Persisted profile of the backend-as-a-service variant."""
    id: str
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


def format_handle(name: Optional[str]) -> str:
    """'Ada Lovelace' -> 'ada.lovelace'; empty names fall back to guest."""
    if not name:
        return GUEST_NAME
    cleaned = re.sub(r"[^a-z0-9]+", ".", name.strip().lower()).strip(".")
    return cleaned or GUEST_NAME
