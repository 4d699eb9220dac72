"""
Target Registry - pages and contexts multiplexed over one transport session.
"""
from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Dict, List, Optional

from cdpwright.cdp.transport import TransportSession
from cdpwright.core.errors import CdpwrightError, CDPClosedError, CDPProtocolError
from cdpwright.core.models import CDPEvent, TargetInfo
from cdpwright.page import DEFAULT_TIMEOUT, Page

if TYPE_CHECKING:
    from cdpwright.cdp.auth import AuthNegotiator
    from cdpwright.cdp.bindings import BindingBridge

logger = logging.getLogger("cdpwright")


class BrowserContext:
    """A logical group of pages; closing it closes every page it owns."""

    def __init__(self, registry: "TargetRegistry", context_id: str, is_default: bool = False):
        self.registry = registry
        self.context_id = context_id
        self.is_default = is_default
        self.closed = False
        self._pages: Dict[str, Page] = {}

    def __repr__(self) -> str:
        return f"<BrowserContext id={self.context_id} pages={len(self._pages)}>"

    @property
    def pages(self) -> List[Page]:
        return list(self._pages.values())

    async def new_page(self) -> Page:
        return await self.registry.create_page(self)

    async def close(self) -> None:
        await self.registry.close_context(self)


class TargetRegistry:
    """
    Tracks targets, pages and contexts for one TransportSession.

    The tab the browser opened at launch is handed out by the first
    ``create_page()`` call instead of creating a second blank tab.
    """

    def __init__(
        self,
        session: TransportSession,
        initial_target: Optional[TargetInfo] = None,
        *,
        auth: Optional["AuthNegotiator"] = None,
        bridge: Optional["BindingBridge"] = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        navigation_timeout: float = DEFAULT_TIMEOUT,
    ):
        self.session = session
        self.auth = auth
        self.bridge = bridge
        self.default_timeout = default_timeout
        self.navigation_timeout = navigation_timeout
        self.targets: Dict[str, TargetInfo] = {}
        self.pages: Dict[str, Page] = {}
        self.contexts: List[BrowserContext] = []
        self._page_contexts: Dict[str, BrowserContext] = {}
        self._initial_target_id: Optional[str] = None

        if initial_target is not None:
            self.targets[initial_target.target_id] = initial_target
            self._initial_target_id = initial_target.target_id

        session.on("Target.targetCreated", self._on_target_info)
        session.on("Target.targetInfoChanged", self._on_target_info)
        session.on("Target.targetDestroyed", self._on_target_destroyed)
        session.on("Target.detachedFromTarget", self._on_detached)

    async def start(self) -> None:
        """Ask for target lifecycle events; older endpoints may refuse."""
        try:
            await self.session.send("Target.setDiscoverTargets", {"discover": True})
        except CDPProtocolError as e:
            logger.debug(f"Target discovery unavailable: {e}")

    # =========================================================================
    # Contexts
    # =========================================================================

    def new_context(self, is_default: bool = False) -> BrowserContext:
        context = BrowserContext(self, uuid.uuid4().hex[:12], is_default=is_default)
        self.contexts.append(context)
        return context

    async def close_context(self, context: BrowserContext) -> None:
        """Close every page in ``context`` and forget it."""
        if context.closed:
            return
        context.closed = True
        if not self.session.is_open:
            # No channel: closing remotely would reattach once per page.
            logger.info(
                "Channel is down, forgetting pages without closing them",
                extra={"pages": len(context.pages)},
            )
            for page in list(context.pages):
                self._forget(page.target_id)
        # The page the websocket itself is attached to goes last.
        for page in sorted(context.pages, key=lambda p: p.session_id is None):
            try:
                await self.close_page(page.target_id)
            except CdpwrightError as e:
                logger.warning(
                    f"Failed to close page while closing context: {e}",
                    extra={"target_id": page.target_id},
                )
        if context in self.contexts:
            self.contexts.remove(context)

    async def close_all(self) -> None:
        for context in list(self.contexts):
            await self.close_context(context)

    # =========================================================================
    # Pages
    # =========================================================================

    def _make_page(self, target: TargetInfo, context: BrowserContext) -> Page:
        page = Page(
            self.session,
            target,
            bridge=self.bridge,
            on_close=self._close_page_handle,
            default_timeout=self.default_timeout,
            navigation_timeout=self.navigation_timeout,
        )
        self.targets[target.target_id] = target
        self.pages[target.target_id] = page
        self._page_contexts[target.target_id] = context
        context._pages[target.target_id] = page
        return page

    async def _claim_initial_target(self) -> Optional[TargetInfo]:
        target_id, self._initial_target_id = self._initial_target_id, None
        if target_id is None:
            return None

        result = await self.session.send("Target.getTargets")
        for info in result.get("targetInfos", []):
            if info.get("targetId") == target_id and info.get("type") == "page":
                target = TargetInfo.from_cdp(info)
                logger.info(f"Using existing page: {target.url}", extra={"target_id": target_id})
                return target
        logger.debug("Initial target is gone, creating a new page", extra={"target_id": target_id})
        return None

    async def create_page(self, context: Optional[BrowserContext] = None) -> Page:
        """Return a page in ``context``, reusing the launch tab exactly once."""
        if self.session.closed:
            raise CDPClosedError("Session is closed", method="create_page")
        if context is None:
            context = self.contexts[0] if self.contexts else self.new_context(is_default=True)
        if context.closed:
            raise CDPClosedError("Browser context has been closed", method="create_page")

        initial = await self._claim_initial_target()
        if initial is not None:
            return self._make_page(initial, context)

        logger.info("Creating new page...")
        created = await self.session.send("Target.createTarget", {"url": "about:blank"})
        target_id = created.get("targetId")
        if not target_id:
            raise CDPProtocolError("Target.createTarget returned no targetId", method="Target.createTarget")

        attached = await self.session.send("Target.attachToTarget", {"targetId": target_id, "flatten": True})
        session_id = attached.get("sessionId")
        if not session_id:
            raise CDPProtocolError(
                "Target.attachToTarget returned no sessionId",
                target_id=target_id,
                method="Target.attachToTarget",
            )

        target = self.targets.get(target_id) or TargetInfo(target_id=target_id, type="page", url="about:blank")
        target.session_id = session_id
        page = self._make_page(target, context)

        await self.session.send("Page.enable", {}, session_id=session_id)
        if self.auth is not None and self.auth.is_listening:
            await self.auth.attach_session(session_id)

        logger.info("Attached to new page", extra={"target_id": target_id, "session_id": session_id})
        return page

    def get_page(self, target_id: str) -> Page:
        page = self.pages.get(target_id)
        if page is None or page.closed:
            raise CDPClosedError("Page has been closed", target_id=target_id, method="get_page")
        return page

    def _forget(self, target_id: str) -> Optional[Page]:
        page = self.pages.pop(target_id, None)
        self.targets.pop(target_id, None)
        context = self._page_contexts.pop(target_id, None)
        if context is not None:
            context._pages.pop(target_id, None)
        if page is not None:
            page._mark_closed()
        return page

    async def close_page(self, target_id: str) -> None:
        """Tear down the remote target; the page handle is unusable afterwards."""
        page = self.pages.get(target_id)
        if page is None or page.closed:
            return
        try:
            await self.session.send("Target.closeTarget", {"targetId": target_id})
        finally:
            self._forget(target_id)
        logger.debug("Closed page", extra={"target_id": target_id})

    async def _close_page_handle(self, page: Page) -> None:
        await self.close_page(page.target_id)

    # =========================================================================
    # Events
    # =========================================================================

    def _on_target_info(self, event: CDPEvent) -> None:
        info = event.params.get("targetInfo") or {}
        target_id = info.get("targetId")
        if not target_id:
            return
        target = self.targets.get(target_id)
        if target is None:
            self.targets[target_id] = TargetInfo.from_cdp(info)
            return
        target.url = info.get("url", target.url)
        target.title = info.get("title", target.title)

    def _on_target_destroyed(self, event: CDPEvent) -> None:
        target_id = event.params.get("targetId")
        if target_id and self._forget(target_id) is not None:
            logger.info("Target destroyed", extra={"target_id": target_id})

    def _on_detached(self, event: CDPEvent) -> None:
        session_id = event.params.get("sessionId")
        if not session_id:
            return
        for target_id, page in list(self.pages.items()):
            if page.session_id == session_id:
                logger.info("Target detached from session", extra={"session_id": session_id})
                self._forget(target_id)
