"""Long-running development servers started through a terminal.

A service command (``npm run dev``, ``python manage.py runserver``, ...)
never exits on its own. The manager runs it as a background command, watches
its output for a port and a ready banner, polls ``http://localhost:<port>``
until something answers, and stops it by aborting its process tree.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

import httpx

from agentterm.logging import get_logger
from agentterm.terminal.events import TerminalCallbacks
from agentterm.terminal.terminal import RunHandle, Terminal

log = get_logger("terminal.services")

SERVICE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(p), name)
    for p, name in [
        # Node.js / JavaScript
        (r"^(npm|yarn|pnpm|bun)\s+(run\s+)?(dev|develop|start|serve|preview|watch)", "Node.js Dev Server"),
        (r"^(npx|bunx)\s+vite", "Vite"),
        (r"^(npx|bunx)\s+next\s+(dev|start)", "Next.js"),
        (r"^(npx|bunx)\s+nuxt\s+(dev|start)", "Nuxt.js"),
        (r"^(npx|bunx)\s+gatsby\s+(develop|serve)", "Gatsby"),
        (r"^(npx|bunx)\s+remix\s+(dev|start)", "Remix"),
        (r"^(npx|bunx)\s+astro\s+(dev|preview)", "Astro"),
        (r"^(npx|bunx)\s+parcel", "Parcel"),
        (r"^(npx|bunx)\s+webpack(-dev-server)?", "Webpack"),
        (r"^(npx|bunx)\s+storybook", "Storybook"),
        (r"^(npx|bunx)\s+(serve|http-server)", "Static Server"),
        (r"^(npx|bunx)\s+nodemon", "Nodemon"),
        (r"^(npx|bunx)\s+expo\s+start", "Expo"),
        (r"^ng\s+serve", "Angular"),
        (r"^node\s+.*server", "Node.js Server"),
        (r"^deno\s+run.*--allow-net", "Deno Server"),
        # Python
        (r"^python3?\s+-m\s+http\.server", "Python HTTP Server"),
        (r"^python3?\s+manage\.py\s+runserver", "Django"),
        (r"^flask\s+run", "Flask"),
        (r"^python3?\s+.*app\.py", "Python App"),
        (r"^uvicorn", "Uvicorn"),
        (r"^gunicorn", "Gunicorn"),
        (r"^hypercorn", "Hypercorn"),
        (r"^streamlit\s+run", "Streamlit"),
        (r"^jupyter\s+(notebook|lab)", "Jupyter"),
        (r"^(poetry|pipenv|uv)\s+run\s+(python|uvicorn|gunicorn|flask)", "Python Server"),
        # Ruby
        (r"^rails\s+s(erver)?\b", "Rails"),
        (r"^bundle\s+exec\s+(rails|rackup|puma)", "Bundler Server"),
        (r"^jekyll\s+serve", "Jekyll"),
        (r"^(rackup|puma)", "Rack"),
        # PHP
        (r"^php\s+-S", "PHP Built-in Server"),
        (r"^php\s+artisan\s+serve", "Laravel"),
        (r"^symfony\s+serve", "Symfony"),
        # JVM
        (r"^(java|kotlin)\s+.*\.(jar|war)", "Java Application"),
        (r"^(\./)?mvnw?\s+spring-boot:run", "Spring Boot Maven"),
        (r"^(\./)?gradlew?\s+bootRun", "Spring Boot Gradle"),
        (r"^sbt\s+run", "SBT"),
        # Go / Rust / .NET
        (r"^go\s+run", "Go"),
        (r"^air\b", "Air (Go)"),
        (r"^cargo\s+(run|watch)", "Cargo"),
        (r"^trunk\s+serve", "Trunk"),
        (r"^dotnet\s+(run|watch)", ".NET"),
        # Containers and static site generators
        (r"^docker(-compose|\s+compose)?\s+(run|up)", "Docker"),
        (r"^hugo\s+serve", "Hugo"),
        (r"^hexo\s+serve", "Hexo"),
        (r"^eleventy\s+--serve", "Eleventy"),
        (r"^zola\s+serve", "Zola"),
    ]
]

READY_PATTERNS: list[re.Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"Server.*(?:running|listening|started).*(?:on|at).*(?:port|http)",
        r"Listening.*(?:on|at).*(?:port|\d{4})",
        r"(?:Ready|Started).*(?:on|at).*(?:port|http)",
        r"Available at.*http",
        r"Server is ready",
        r"Compiled successfully",
        r"Build succeeded",
        r"Watching for file changes",
        r"Development server.*running",
        r"Local:.*http",
        r"Vite.*ready in \d+\s*ms",
        r"Starting development server",
        r"Uvicorn running on",
        r"Running on http",
        r"Tomcat.*started on port",
    ]
]

PORT_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(?:localhost|127\.0\.0\.1|0\.0\.0\.0|\[::1?\])[:\s]*(\d{2,5})\b", re.IGNORECASE),
    re.compile(r"port[:\s]+(\d{2,5})\b", re.IGNORECASE),
    re.compile(r"https?://[^\s/:]+:(\d{2,5})\b", re.IGNORECASE),
]


class ServiceStatus(str, Enum):
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class ServiceInfo:
    """A tracked service."""

    id: str
    name: str
    command: str
    cwd: str
    status: ServiceStatus = ServiceStatus.STARTING
    owner_key: str | None = None
    port: int | None = None
    started_at: float = field(default_factory=time.time)
    ready_at: float | None = None
    stopped_at: float | None = None

    @property
    def url(self) -> str | None:
        return f"http://localhost:{self.port}" if self.port else None


def is_service_command(command: str) -> bool:
    command = command.strip()
    return any(pattern.search(command) for pattern, _ in SERVICE_PATTERNS)


def get_service_name(command: str) -> str:
    command = command.strip()
    for pattern, name in SERVICE_PATTERNS:
        if pattern.search(command):
            return name
    return "Service"


def extract_port(output: str) -> int | None:
    """First plausible TCP port mentioned in ``output``."""
    for pattern in PORT_PATTERNS:
        for match in pattern.finditer(output):
            port = int(match.group(1))
            if 0 < port < 65536:
                return port
    return None


def is_ready_output(output: str) -> bool:
    return any(pattern.search(output) for pattern in READY_PATTERNS)


class ServiceManager:
    """Tracks services per owner and decides when they are ready.

    Args:
        health_check_delay: Seconds after start before the first HTTP probe.
        check_interval: Seconds between probes.
        max_checks: Probes before the service is assumed ready anyway
            (it may have no HTTP endpoint).
        request_timeout: Timeout of one probe.
        on_status: Called with a snapshot whenever a service changes status.
        transport: httpx transport override (tests).
    """

    def __init__(
        self,
        *,
        health_check_delay: float = 3.0,
        check_interval: float = 3.0,
        max_checks: int = 20,
        request_timeout: float = 2.0,
        on_status: Callable[[ServiceInfo], Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._services: dict[str, ServiceInfo] = {}
        self._handles: dict[str, RunHandle] = {}
        self._health_tasks: dict[str, asyncio.Task[None]] = {}
        self._health_check_delay = health_check_delay
        self._check_interval = check_interval
        self._max_checks = max_checks
        self._request_timeout = request_timeout
        self._on_status = on_status
        self._transport = transport

    # -- Queries -----------------------------------------------------------------------

    def get_service(self, service_id: str) -> ServiceInfo | None:
        return self._services.get(service_id)

    def get_services(self) -> list[ServiceInfo]:
        return list(self._services.values())

    def get_owner_services(self, owner_key: str) -> list[ServiceInfo]:
        return [s for s in self._services.values() if s.owner_key == owner_key]

    # -- Lifecycle ---------------------------------------------------------------------

    def run_service(
        self,
        terminal: Terminal,
        command: str,
        service_id: str,
        callbacks: TerminalCallbacks | None = None,
    ) -> ServiceInfo:
        """Start ``command`` on ``terminal`` as a background service.

        The caller is released immediately; output keeps flowing to
        ``callbacks.on_line`` and is watched for a port and ready banner.
        """
        base = callbacks or TerminalCallbacks()
        user_on_line = base.on_line

        def on_line(text: str) -> None:
            self.observe_output(service_id, text)
            if user_on_line is not None:
                user_on_line(text)

        watched = replace(base, on_line=on_line)
        handle = terminal.run(command, watched, background_patterns=[command])
        return self.start_service(command, service_id, terminal.initial_cwd, handle, terminal.task_id)

    def start_service(
        self,
        command: str,
        service_id: str,
        cwd: str,
        handle: RunHandle,
        owner_key: str | None = None,
    ) -> ServiceInfo:
        """Track an already running command as a service and begin health checks."""
        service = ServiceInfo(
            id=service_id,
            name=get_service_name(command),
            command=command,
            cwd=cwd,
            owner_key=owner_key,
        )
        self._services[service_id] = service
        self._handles[service_id] = handle
        log.info("Starting service %s (%s): %s", service.name, service_id, command)
        self._notify(service)
        self._health_tasks[service_id] = asyncio.create_task(self._health_check(service_id))
        return service

    def observe_output(self, service_id: str, output: str) -> None:
        """Feed service output; picks up the port and the ready banner."""
        service = self._services.get(service_id)
        if service is None or service.status is not ServiceStatus.STARTING:
            return
        if service.port is None:
            port = extract_port(output)
            if port is not None:
                service.port = port
                log.debug("Service %s listening on port %d", service_id, port)
        if is_ready_output(output):
            self._mark_ready(service_id)

    async def _probe(self, url: str) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self._request_timeout, transport=self._transport
            ) as client:
                await client.get(url)
        except httpx.HTTPError:
            return False
        # Any status code means something is serving
        return True

    async def _health_check(self, service_id: str) -> None:
        await asyncio.sleep(self._health_check_delay)
        for _ in range(self._max_checks):
            service = self._services.get(service_id)
            if service is None or service.status is not ServiceStatus.STARTING:
                return
            if service.url and await self._probe(service.url):
                self._mark_ready(service_id)
                return
            await asyncio.sleep(self._check_interval)

        log.info("Service %s never answered a probe, assuming ready", service_id)
        self._mark_ready(service_id)

    def _mark_ready(self, service_id: str) -> None:
        service = self._services.get(service_id)
        if service is None or service.status is not ServiceStatus.STARTING:
            return
        service.status = ServiceStatus.READY
        service.ready_at = time.time()
        task = self._health_tasks.pop(service_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        log.info("Service ready: %s (%s) %s", service.name, service_id, service.url or "")
        self._notify(service)

    async def stop_service(self, service_id: str) -> None:
        """Kill the service's process tree and forget it."""
        service = self._services.get(service_id)
        if service is None:
            return
        service.status = ServiceStatus.STOPPING
        self._notify(service)

        task = self._health_tasks.pop(service_id, None)
        if task is not None:
            task.cancel()

        handle = self._handles.pop(service_id, None)
        if handle is not None:
            await handle.abort()

        service.status = ServiceStatus.STOPPED
        service.stopped_at = time.time()
        self._services.pop(service_id, None)
        log.info("Service stopped: %s (%s)", service.name, service_id)
        self._notify(service)

    async def stop_owner_services(self, owner_key: str) -> None:
        for service in self.get_owner_services(owner_key):
            await self.stop_service(service.id)

    async def dispose(self) -> None:
        for task in self._health_tasks.values():
            task.cancel()
        self._health_tasks.clear()
        await asyncio.gather(*(self.stop_service(sid) for sid in list(self._services)))

    def _notify(self, service: ServiceInfo) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(replace(service))
        except Exception:
            log.exception("Error in service status callback")
