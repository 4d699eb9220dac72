"""
cdpwright Models - Data classes shared by the transport, registry and waiters.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional


class ElementState(str, Enum):
    ATTACHED = "attached"
    DETACHED = "detached"
    VISIBLE = "visible"
    HIDDEN = "hidden"


class WaitUntil(str, Enum):
    LOAD = "load"
    DOMCONTENTLOADED = "domcontentloaded"
    NETWORKIDLE0 = "networkidle0"
    NETWORKIDLE2 = "networkidle2"


class ChallengeKind(str, Enum):
    NETWORK = "network"
    FETCH = "fetch"


@dataclass
class TargetInfo:
    """Information about a CDP target."""
    target_id: str
    type: str
    url: str = ""
    title: str = ""
    browser_context_id: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def is_page(self) -> bool:
        return self.type == "page"

    @classmethod
    def from_cdp(cls, info: Dict[str, Any]) -> "TargetInfo":
        """Build from a Target.TargetInfo dict or a /json discovery entry."""
        return cls(
            target_id=info.get("targetId") or info.get("id", ""),
            type=info.get("type", "unknown"),
            url=info.get("url", ""),
            title=info.get("title", ""),
            browser_context_id=info.get("browserContextId"),
        )


@dataclass
class CDPEvent:
    """An unsolicited protocol message (no correlation id)."""
    method: str
    params: Dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None


@dataclass
class AuthChallenge:
    """A proxy authentication prompt awaiting credentials."""
    request_id: str
    kind: ChallengeKind
    username: str
    password: str
    session_id: Optional[str] = None

    def response_params(self, response: str = "ProvideCredentials") -> Dict[str, Any]:
        challenge_response: Dict[str, Any] = {"response": response}
        if response == "ProvideCredentials":
            challenge_response["username"] = self.username
            challenge_response["password"] = self.password
        return {
            "requestId": self.request_id,
            "authChallengeResponse": challenge_response,
        }


@dataclass
class WaitSpec:
    """
    A bounded polling request.

    Exactly one of ``element_state`` / ``wait_until`` is set for the two
    canonical waits; generic waits leave both as None.
    """
    predicate: Callable[[], Awaitable[Any]]
    interval: float
    timeout: float
    element_state: Optional[ElementState] = None
    wait_until: Optional[WaitUntil] = None
    description: str = "condition"
