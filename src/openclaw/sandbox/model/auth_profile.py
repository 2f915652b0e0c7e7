"""OAuth profile records for the gateway's auth profile store."""
from typing import Any, Dict, Literal, Optional

from pydantic import Field, ValidationError

from openclaw.sandbox.model.base import Base

CODEX_PROVIDER = "openai-codex"
CODEX_PROFILE_ID = f"{CODEX_PROVIDER}:default"


class AuthProfile(Base):
    """OAuth credentials for one provider account slot."""

    type: Literal["oauth"] = "oauth"
    provider: str = CODEX_PROVIDER
    access: str
    refresh: str
    expires: int
    account_id: Optional[str] = None

    def same_credentials(self, other: Optional["AuthProfile"]) -> bool:
        """Field-for-field comparison of the credential fields."""
        if other is None:
            return False
        return (
            self.type == other.type
            and self.provider == other.provider
            and self.access == other.access
            and self.refresh == other.refresh
            and self.expires == other.expires
            and self.account_id == other.account_id
        )


class AuthStore(Base):
    """Versioned mapping of profile id to profile document.

    Profiles are kept as raw documents so that entries written by other tools survive a
    sync untouched. The version is carried over from whatever store is found.
    """

    version: int = 1
    profiles: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Any) -> "AuthStore":
        if not isinstance(document, dict):
            return cls()

        version = document.get("version")
        if not isinstance(version, int) or isinstance(version, bool):
            version = 1

        profiles = document.get("profiles")
        if not isinstance(profiles, dict):
            profiles = {}

        extra = {k: v for k, v in document.items() if k not in ("version", "profiles")}
        return cls.model_validate({**extra, "version": version, "profiles": profiles})

    def get_profile(self, profile_id: str) -> Optional[AuthProfile]:
        """Return the stored profile, or None if absent or not a valid OAuth profile."""
        raw = self.profiles.get(profile_id)
        if not isinstance(raw, dict):
            return None
        try:
            return AuthProfile.model_validate(raw)
        except ValidationError:
            return None

    def with_profile(self, profile_id: str, profile: AuthProfile) -> "AuthStore":
        profiles = dict(self.profiles)
        profiles[profile_id] = profile.to_document()
        return self.model_copy(update={"profiles": profiles})

    def to_document(self) -> dict:
        return {
            "version": self.version,
            "profiles": dict(self.profiles),
            **(self.model_extra or {}),
        }
