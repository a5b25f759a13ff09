"""Browser caching policies keyed by content type."""

from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Optional

DEFAULT_POLICY_KEY = "default"


@dataclass(frozen=True)
class BrowserCachePolicy:
    """Cache-Control/Expires directives for one content type."""

    max_age: Optional[int] = None
    s_maxage: Optional[int] = None
    public: bool = False
    private: bool = False
    no_cache: bool = False
    no_store: bool = False
    must_revalidate: bool = False
    proxy_revalidate: bool = False
    expires: Optional[datetime] = None
    """Absolute expiry time; naive datetimes are treated as UTC"""

    @property
    def cache_control(self) -> Optional[str]:
        """Render the Cache-Control header value.

        Returns:
            Comma separated directives in a fixed order, or None if the
            policy has no directives
        """
        policy: list[str] = []
        if self.max_age is not None:
            policy.append(f"max-age={self.max_age}")
        if self.s_maxage is not None:
            policy.append(f"s-maxage={self.s_maxage}")
        if self.public:
            policy.append("public")
        if self.private:
            policy.append("private")
        if self.no_cache:
            policy.append("no-cache")
        if self.no_store:
            policy.append("no-store")
        if self.must_revalidate:
            policy.append("must-revalidate")
        if self.proxy_revalidate:
            policy.append("proxy-revalidate")
        return ", ".join(policy) if policy else None

    @property
    def expires_header(self) -> Optional[str]:
        """Render the Expires header value in RFC 1123 format."""
        if self.expires is None:
            return None
        expires = self.expires
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return format_datetime(expires.astimezone(timezone.utc), usegmt=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BrowserCachePolicy":
        """Build a policy from a config mapping (accepts dashed keys too)."""
        values = {key.replace("-", "_"): value for key, value in data.items()}
        expires = values.get("expires")
        if isinstance(expires, str):
            values["expires"] = datetime.fromisoformat(expires)
        return cls(**values)

    def __str__(self) -> str:
        return self.cache_control or ""


class CachingPolicyResolver:
    """Maps content types to caching policies.

    Lookup tries the exact content type (parameters such as ``; charset``
    are dropped), then the type family (``text/*``), then the default
    policy. Without a default policy, unmatched types get no policy.
    """

    def __init__(self) -> None:
        self._policies: dict[str, BrowserCachePolicy] = {}

    def add_caching_policy(self, content_type: str, **directives: Any) -> None:
        """Register a policy for a content type, family or ``default``."""
        self._policies[str(content_type).lower()] = BrowserCachePolicy(**directives)

    def set_policy(self, content_type: str, policy: BrowserCachePolicy) -> None:
        self._policies[str(content_type).lower()] = policy

    def default_caching_policy(self, **directives: Any) -> None:
        self.add_caching_policy(DEFAULT_POLICY_KEY, **directives)

    @property
    def default_policy(self) -> Optional[BrowserCachePolicy]:
        return self._policies.get(DEFAULT_POLICY_KEY)

    def caching_policy_for(
        self, content_type: Optional[str]
    ) -> Optional[BrowserCachePolicy]:
        """Resolve the policy for a content type.

        Args:
            content_type: MIME type, possibly with parameters

        Returns:
            The matching policy or the default policy (may be None)
        """
        if content_type:
            mime = content_type.split(";")[0].strip().lower()
            if mime in self._policies:
                return self._policies[mime]
            family = mime.split("/")[0]
            if f"{family}/*" in self._policies:
                return self._policies[f"{family}/*"]
        return self.default_policy

    def __len__(self) -> int:
        return len(self._policies)
