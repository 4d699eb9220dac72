"""
Proxy authentication - answers auth challenges and resumes paused requests.
"""
import asyncio
import logging
from enum import Enum
from typing import Optional, Set

from cdpwright import js
from cdpwright.cdp.transport import TransportSession
from cdpwright.core.errors import CdpwrightError
from cdpwright.core.models import AuthChallenge, CDPEvent, ChallengeKind

logger = logging.getLogger("cdpwright")

PROBE_URLS = ("https://example.org/", "https://httpbin.org/ip")


class NegotiatorState(Enum):
    INACTIVE = "inactive"
    LISTENING = "listening"


class AuthNegotiator:
    """
    Consumes the session's event stream to satisfy proxy authentication.

    Enabling Fetch with ``handleAuthRequests`` pauses every request, so each
    ``Fetch.requestPaused`` must be resumed or the page stalls. Credentials
    are offered once per request id; a repeated challenge for the same request
    means the proxy rejected them and is cancelled instead of retried.
    """

    def __init__(
        self,
        session: TransportSession,
        username: str,
        password: str,
        settle_period: float = 2.0,
        probe_urls=PROBE_URLS,
    ):
        self.session = session
        self.username = username
        self.password = password
        self.settle_period = settle_period
        self.probe_urls = tuple(probe_urls)
        self.state = NegotiatorState.INACTIVE
        self.answered_requests: Set[str] = set()
        self.rejected_requests: Set[str] = set()
        self.sessions: Set[Optional[str]] = set()

    @property
    def is_listening(self) -> bool:
        return self.state is NegotiatorState.LISTENING

    async def activate(self, session_id: Optional[str] = None, probe: bool = True) -> None:
        """Enable Network/Fetch, start listening, and trigger a first challenge."""
        if self.is_listening:
            return

        logger.info(f"Setting up auth handlers for user: {self.username}")
        self.session.subscribe(self.handle_event)
        self.state = NegotiatorState.LISTENING
        try:
            await self.attach_session(session_id)
        except BaseException:
            self.deactivate()
            raise

        if probe:
            await self._probe(session_id)
            await asyncio.sleep(self.settle_period)

    async def attach_session(self, session_id: Optional[str]) -> None:
        """Enable the auth domains on one (possibly flattened) session."""
        await self.session.send("Network.enable", {}, session_id=session_id)
        await self.session.send("Fetch.enable", {"handleAuthRequests": True}, session_id=session_id)
        self.sessions.add(session_id)
        logger.debug("Auth domains enabled", extra={"session_id": session_id})

    async def _probe(self, session_id: Optional[str]) -> None:
        """Fire requests at neutral destinations so the proxy challenges now."""
        logger.debug("Making probe requests to trigger proxy authentication")
        try:
            await self.session.send(
                "Runtime.evaluate",
                {"expression": js.call_expression(js.PROBE_REQUESTS, list(self.probe_urls))},
                session_id=session_id,
            )
        except CdpwrightError as e:
            logger.warning(f"Auth probe request failed: {e}", extra={"session_id": session_id})

    def deactivate(self) -> None:
        if not self.is_listening:
            return
        self.session.unsubscribe(self.handle_event)
        self.state = NegotiatorState.INACTIVE
        self.sessions.clear()
        logger.debug("Auth handlers removed")

    # =========================================================================
    # Event handling
    # =========================================================================

    def _challenge(self, event: CDPEvent, kind: ChallengeKind) -> AuthChallenge:
        return AuthChallenge(
            request_id=str(event.params.get("requestId", "")),
            kind=kind,
            username=self.username,
            password=self.password,
            session_id=event.session_id,
        )

    async def handle_event(self, event: CDPEvent) -> None:
        if event.method == "Network.authRequired":
            await self._answer(self._challenge(event, ChallengeKind.NETWORK))
        elif event.method == "Fetch.authRequired":
            await self._answer(self._challenge(event, ChallengeKind.FETCH))
        elif event.method == "Fetch.requestPaused":
            await self._resume(event)

    async def _answer(self, challenge: AuthChallenge) -> None:
        key = f"{challenge.kind.value}:{challenge.request_id}"
        if key in self.answered_requests:
            # Second challenge for the same request: the proxy refused the credentials.
            self.rejected_requests.add(challenge.request_id)
            logger.error(
                f"Proxy rejected credentials for request ID: {challenge.request_id}",
                extra={"session_id": challenge.session_id},
            )
            params = challenge.response_params("CancelAuth")
        else:
            self.answered_requests.add(key)
            logger.info(f"{challenge.kind.value.capitalize()} auth required for request ID: {challenge.request_id}")
            params = challenge.response_params()

        method = (
            "Network.provideAuthCredentials"
            if challenge.kind is ChallengeKind.NETWORK
            else "Fetch.continueWithAuth"
        )
        try:
            await self.session.send(method, params, session_id=challenge.session_id)
        except CdpwrightError as e:
            logger.error(f"Failed to answer {challenge.kind.value} auth challenge: {e}")

    async def _resume(self, event: CDPEvent) -> None:
        request_id = event.params.get("requestId")
        try:
            await self.session.send(
                "Fetch.continueRequest",
                {"requestId": request_id},
                session_id=event.session_id,
            )
        except CdpwrightError as e:
            logger.error(f"Failed to continue request {request_id}: {e}")
