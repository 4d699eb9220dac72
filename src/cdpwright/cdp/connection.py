"""
Connection Manager - Browser process lifecycle and channel attachment.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import os
import shutil
import subprocess
from typing import Any, Callable, Dict, List, Optional

import httpx

from cdpwright.cdp.transport import TransportSession
from cdpwright.core.config import LaunchConfig, ProxyConfig
from cdpwright.core.errors import (
    BrowserLaunchError,
    CdpwrightError,
    CDPConnectionError,
)
from cdpwright.core.models import TargetInfo

logger = logging.getLogger("cdpwright")

ExecutableResolver = Callable[[], Optional[str]]


def find_chrome_executable() -> Optional[str]:
    """Return the first Chrome/Chromium executable found, or None."""
    chrome_names = [
        "google-chrome",
        "google-chrome-stable",
        "chromium",
        "chromium-browser",
        "chrome",
    ]

    for name in chrome_names:
        path = shutil.which(name)
        if path:
            return path

    fallback_paths = [
        "/usr/bin/google-chrome",
        "/usr/bin/chromium-browser",
        "/usr/bin/chromium",
        "/snap/bin/chromium",
        "/opt/google/chrome/chrome",
        # macOS paths
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "/Applications/Chromium.app/Contents/MacOS/Chromium",
        # Windows paths
        r"C:\Program Files\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
    ]
    for path in fallback_paths:
        if os.path.exists(path):
            return path
    return None


def build_args(config: LaunchConfig) -> List[str]:
    """Compute the browser command-line flags for ``config`` (executable excluded)."""
    args = [
        f"--remote-debugging-port={config.port}",
        "--no-first-run",
        "--no-default-browser-check",
        f"--user-data-dir={config.user_data_dir}",
        "--remote-allow-origins=*",
    ]

    if isinstance(config.proxy, ProxyConfig):
        args.append(f"--proxy-server={config.proxy.server}")

    if config.headless:
        args.append("--headless=new")

    if config.ignore_https_errors:
        args.append("--ignore-certificate-errors")

    args.extend(config.args)
    args.append(config.start_url or "about:blank")
    return args


class ConnectionManager:
    """
    Owns the browser process, its profile directory and the channel to it.

    ``launch()`` spawns Chrome and attaches; ``connect()`` attaches to a
    websocket endpoint that something else started. ``attach()`` doubles as
    the transport's reattachment hook.
    """

    def __init__(
        self,
        config: Optional[LaunchConfig] = None,
        resolver: Optional[ExecutableResolver] = None,
    ):
        self.config = config or LaunchConfig()
        self.resolver = resolver or find_chrome_executable
        self.process: Optional[subprocess.Popen] = None
        self.initial_target: Optional[TargetInfo] = None
        self._owns_profile_dir = False
        self.session = TransportSession(
            command_timeout=self.config.command_timeout,
            reattach=self.attach,
            debug=self.config.debug,
        )

    @property
    def discovery_url(self) -> str:
        return f"http://{self.config.host}:{self.config.port}/json"

    # =========================================================================
    # Discovery / attach
    # =========================================================================

    async def _fetch_targets_once(self, client: httpx.AsyncClient) -> List[Dict[str, Any]]:
        response = await client.get(self.discovery_url)
        targets = response.json()
        if not isinstance(targets, list):
            raise ValueError("discovery endpoint did not return a JSON array")
        return targets

    async def discover_targets(self) -> List[Dict[str, Any]]:
        """Poll the discovery endpoint with bounded retries."""
        attempts = max(1, self.config.discovery_attempts)
        last_error: Optional[Exception] = None

        async with httpx.AsyncClient() as client:
            for attempt in range(1, attempts + 1):
                try:
                    targets = await self._fetch_targets_once(client)
                    logger.debug(f"Discovered {len(targets)} targets")
                    return targets
                except (httpx.HTTPError, ValueError) as e:
                    last_error = e
                    if attempt < attempts:
                        logger.info(
                            f"Failed to reach debugger, retrying ({attempt}/{attempts})...",
                            extra={"error_type": type(e).__name__},
                        )
                        await asyncio.sleep(self.config.discovery_interval)

        raise CDPConnectionError(
            f"Failed to fetch targets from {self.discovery_url} after {attempts} attempts: {last_error}",
            method="discover_targets",
        ) from last_error

    async def attach(self) -> TransportSession:
        """Open the session on the first page target and enable Page."""
        targets = await self.discover_targets()

        match = next(
            (t for t in targets if t.get("type") == "page" and t.get("webSocketDebuggerUrl")),
            None,
        )
        if match is None:
            raise CDPConnectionError(
                f"No page target found at {self.config.host}:{self.config.port}",
                method="attach",
            )

        self.initial_target = TargetInfo.from_cdp(match)
        await self.session.open(match["webSocketDebuggerUrl"])
        logger.info(
            f"Attached to page target: {self.initial_target.url}",
            extra={"target_id": self.initial_target.target_id}
        )

        await self.session.send("Page.enable")
        return self.session

    async def connect(self, ws_url: str) -> TransportSession:
        """Attach to an already running browser by websocket endpoint."""
        self.session.reattach = functools.partial(self.session.open, ws_url)
        await self.session.open(ws_url)
        return self.session

    # =========================================================================
    # Process lifecycle
    # =========================================================================

    def _resolve_executable(self) -> str:
        path = self.config.executable_path or self.resolver()
        if not path:
            raise BrowserLaunchError(
                "Chrome executable not found. Please provide executable_path.",
                method="launch",
            )
        return path

    async def launch(self) -> TransportSession:
        """Spawn the browser, wait out the grace period and attach."""
        try:
            executable = self._resolve_executable()
            args = build_args(self.config)

            if not os.path.isdir(self.config.user_data_dir):
                os.makedirs(self.config.user_data_dir, exist_ok=True)
                self._owns_profile_dir = True

            if isinstance(self.config.proxy, ProxyConfig):
                logger.info(f"Using proxy: {self.config.proxy.display}")

            logger.debug(f"Launching Chrome with args: {' '.join(args)}")
            try:
                self.process = subprocess.Popen(
                    [executable, *args],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            except OSError as e:
                raise BrowserLaunchError(
                    f"Failed to launch browser: {e}",
                    method="launch",
                    executable=executable,
                ) from e
            logger.info(f"Launched Chrome (PID: {self.process.pid})")

            await asyncio.sleep(self.config.launch_grace_period)

            if self.process.poll() is not None:
                raise BrowserLaunchError(
                    f"Chrome process exited unexpectedly with code {self.process.returncode}",
                    method="launch",
                )

            return await self.attach()
        except BaseException as e:
            if not isinstance(e, CdpwrightError):
                logger.error(f"Failed to launch browser: {e}")
            await self.teardown()
            raise

    async def _terminate_process(self) -> None:
        process, self.process = self.process, None
        if process is None or process.poll() is not None:
            return

        logger.info("Terminating Chrome process...")
        process.terminate()
        try:
            await asyncio.wait_for(asyncio.to_thread(process.wait), timeout=5.0)
        except asyncio.TimeoutError:
            process.kill()
            try:
                await asyncio.wait_for(asyncio.to_thread(process.wait), timeout=2.0)
            except asyncio.TimeoutError:
                logger.warning("Chrome process did not exit after kill")

    def _remove_profile_dir(self) -> None:
        if not self._owns_profile_dir:
            return
        self._owns_profile_dir = False
        try:
            shutil.rmtree(self.config.user_data_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Error removing user data directory: {e}")

    async def teardown(self) -> None:
        """Close the channel, stop the process, then remove the profile directory."""
        await self.session.close()
        await self._terminate_process()
        await asyncio.to_thread(self._remove_profile_dir)
