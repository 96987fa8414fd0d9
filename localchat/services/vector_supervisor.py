"""
Vector store process supervisor.

Keeps the Qdrant service reachable before retrieval and indexing touch it.
Health is probed over HTTP and cached for a short interval. When the store
is down and auto-start is enabled, it is launched as a Docker container or,
failing that, as a locally installed binary, and then polled until ready.

One supervisor exists per process; mutation of its launch state goes
through a single lock while readers use the latest snapshot.
"""
import asyncio
import enum
import logging
import os
from dataclasses import dataclass
from typing import Optional

import backoff
import httpx
from cachetools import TTLCache

from localchat.config import Settings, settings as default_settings
from localchat.exceptions import VectorStoreStartupError
from localchat.schemas.admin import ServiceStatus, VectorStoreConfig
from localchat.utils.http import create_http_client

logger = logging.getLogger(__name__)

QDRANT_CONTAINER_PORT = 6333
QDRANT_STORAGE_MOUNT = "/qdrant/storage"
COMMAND_TIMEOUT = 60.0
HEALTH_KEY = "healthy"


class SupervisorState(str, enum.Enum):
    UNKNOWN = "unknown"
    PROBING = "probing"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(*args: str, timeout: float = COMMAND_TIMEOUT) -> CommandResult:
    """
    Run a command to completion and capture its output.

    A missing executable is reported as return code 127 rather than raised.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return CommandResult(returncode=127, stderr=str(e))

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return CommandResult(returncode=124, stderr=f"{args[0]} timed out after {timeout:g}s")

    return CommandResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def config_from_settings(config: Settings) -> VectorStoreConfig:
    return VectorStoreConfig(
        auto_start=config.VECTOR_STORE_AUTO_START,
        host=config.VECTOR_STORE_HOST,
        port=config.VECTOR_STORE_PORT,
        use_docker=config.VECTOR_STORE_USE_DOCKER,
        data_path=config.VECTOR_STORE_DATA_PATH,
        container_name=config.VECTOR_STORE_CONTAINER_NAME,
        image=config.VECTOR_STORE_IMAGE,
        binary=config.VECTOR_STORE_BINARY,
    )


class VectorStoreSupervisor:
    """
    Lifecycle manager for the external vector store.

    Args:
        config: Launch configuration
        health_ttl: Seconds a health probe result stays valid
        probe_timeout: Timeout of a single health probe
        ready_attempts: Probes made while waiting for a launched store
        ready_interval: Seconds between those probes
    """

    def __init__(
        self,
        config: VectorStoreConfig,
        health_ttl: float = 30.0,
        probe_timeout: float = 2.0,
        ready_attempts: int = 15,
        ready_interval: float = 2.0,
    ):
        self._config = config
        self.health_ttl = health_ttl
        self.probe_timeout = probe_timeout
        self.ready_attempts = ready_attempts
        self.ready_interval = ready_interval

        self._lock = asyncio.Lock()
        self._health: TTLCache = TTLCache(maxsize=1, ttl=health_ttl)
        self._state = SupervisorState.UNKNOWN
        self._process: Optional[asyncio.subprocess.Process] = None
        self._launched_with: Optional[str] = None

    @property
    def config(self) -> VectorStoreConfig:
        return self._config

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def base_url(self) -> str:
        return f"http://{self._config.host}:{self._config.port}"

    def _set_state(self, state: SupervisorState) -> None:
        if state != self._state:
            logger.info(f"Vector store supervisor: {self._state.value} -> {state.value}")
            self._state = state

    def invalidate_health(self) -> None:
        self._health.clear()

    @property
    def cached_health(self) -> Optional[bool]:
        """Last probe result while it is still fresh, else None."""
        return self._health.get(HEALTH_KEY)

    async def _probe(self) -> bool:
        """Single health request; any success status counts as healthy."""
        try:
            async with create_http_client(timeout=self.probe_timeout) as client:
                response = await client.get(f"{self.base_url}/")
                return response.is_success
        except httpx.HTTPError:
            return False

    async def is_running(self, force: bool = False) -> bool:
        """
        Whether the store answers its health endpoint.

        The result is cached for ``health_ttl`` seconds unless ``force``.
        """
        cached = self.cached_health
        if not force and cached is not None:
            return cached

        if self._state == SupervisorState.UNKNOWN:
            self._set_state(SupervisorState.PROBING)

        healthy = await self._probe()
        self._health[HEALTH_KEY] = healthy
        self._set_state(SupervisorState.RUNNING if healthy else SupervisorState.STOPPED)
        return healthy

    async def ensure_running(self) -> None:
        """
        Make sure the store is reachable, launching it when allowed.

        Raises:
            VectorStoreStartupError: If no launch method is available or the
                launched store never became ready
        """
        if not self._config.auto_start:
            return
        if await self.is_running():
            return

        async with self._lock:
            if await self.is_running(force=True):
                return

            logger.info(f"Starting vector store on port {self._config.port}")
            try:
                await self._launch()
                await self.wait_for_ready()
            except VectorStoreStartupError:
                self.invalidate_health()
                raise

    async def _launch(self) -> None:
        config = self._config
        if config.use_docker:
            if await self.is_docker_available():
                await self._start_docker()
                return
            logger.warning("Docker is not available, falling back to the local binary")

        if await self.is_binary_available():
            await self._start_binary()
            return

        raise VectorStoreStartupError(
            "Vector store is not running and cannot be started: "
            f"neither Docker nor the '{config.binary}' binary is available. "
            "Install Qdrant (https://qdrant.tech/documentation/quick_start/) or start it manually."
        )

    async def is_docker_available(self) -> bool:
        return (await run_command("docker", "--version")).ok

    async def is_binary_available(self) -> bool:
        return (await run_command(self._config.binary, "--version")).ok

    async def _start_docker(self) -> None:
        config = self._config
        # A stale container with the same name would make `docker run` fail
        await run_command("docker", "stop", config.container_name)
        await run_command("docker", "rm", config.container_name)

        args = [
            "docker", "run",
            "--name", config.container_name,
            "--detach",
            "--restart", "unless-stopped",
            "-p", f"{config.port}:{QDRANT_CONTAINER_PORT}",
        ]
        if config.data_path:
            args += ["-v", f"{config.data_path}:{QDRANT_STORAGE_MOUNT}"]
        args.append(config.image)

        logger.info(f"Launching vector store container '{config.container_name}'")
        result = await run_command(*args)
        if not result.ok:
            raise VectorStoreStartupError(
                f"Failed to start vector store container: {result.stderr.strip() or result.returncode}"
            )
        self._launched_with = "docker"

    async def _start_binary(self) -> None:
        config = self._config
        env = dict(os.environ)
        env["QDRANT__SERVICE__HTTP_PORT"] = str(config.port)
        if config.data_path:
            env["QDRANT__STORAGE__STORAGE_PATH"] = config.data_path

        logger.info(f"Launching vector store binary '{config.binary}'")
        try:
            self._process = await asyncio.create_subprocess_exec(
                config.binary,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise VectorStoreStartupError(f"Failed to start vector store binary: {e}")
        self._launched_with = "binary"

    async def wait_for_ready(self) -> None:
        """
        Poll the health endpoint until it answers.

        Raises:
            VectorStoreStartupError: If the store is not up after all attempts
        """
        @backoff.on_predicate(
            backoff.constant,
            interval=self.ready_interval,
            max_tries=self.ready_attempts,
            jitter=None,
            on_success=lambda details: logger.info(
                f"Vector store ready after {details['tries']} probe(s)"
            ),
            on_backoff=lambda details: logger.debug(
                f"Vector store not ready (attempt {details['tries']}/{self.ready_attempts})"
            ),
        )
        async def probe_until_ready() -> bool:
            return await self.is_running(force=True)

        if await probe_until_ready():
            return

        raise VectorStoreStartupError(
            f"Vector store failed to start within {self.ready_attempts * self.ready_interval:g} seconds"
        )

    async def stop(self) -> None:
        """Stop whichever store this supervisor launched. Safe to call repeatedly."""
        async with self._lock:
            if self._config.use_docker and self._launched_with != "binary":
                result = await run_command("docker", "stop", self._config.container_name)
                if result.ok:
                    logger.info("Vector store container stopped")

            process = self._process
            if process is not None and process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
                logger.info("Vector store binary stopped")

            self._process = None
            self._launched_with = None
            self.invalidate_health()
            self._set_state(SupervisorState.STOPPED)

    async def status(self) -> ServiceStatus:
        running = await self.is_running()
        config = self._config
        if config.use_docker:
            method = "Docker" if await self.is_docker_available() else "Docker (unavailable)"
        else:
            method = "Binary" if await self.is_binary_available() else "Binary (unavailable)"
        return ServiceStatus(
            running=running,
            port=config.port,
            launch_method=method,
            auto_start=config.auto_start,
        )

    async def reconfigure(self, config: VectorStoreConfig) -> VectorStoreConfig:
        """Replace the launch configuration as a whole."""
        async with self._lock:
            self._config = config
            self.invalidate_health()
            self._set_state(SupervisorState.UNKNOWN)
        logger.info(
            f"Vector store reconfigured: port={config.port} docker={config.use_docker} "
            f"auto_start={config.auto_start}"
        )
        return config


# Global supervisor instance
_supervisor: Optional[VectorStoreSupervisor] = None


def init_vector_store_supervisor(config: Optional[Settings] = None) -> VectorStoreSupervisor:
    """Create the process-wide supervisor from settings, replacing any previous one."""
    global _supervisor
    config = config or default_settings
    _supervisor = VectorStoreSupervisor(
        config_from_settings(config),
        health_ttl=config.VECTOR_STORE_HEALTH_TTL,
        probe_timeout=config.VECTOR_STORE_PROBE_TIMEOUT,
        ready_attempts=config.VECTOR_STORE_READY_ATTEMPTS,
        ready_interval=config.VECTOR_STORE_READY_INTERVAL,
    )
    return _supervisor


def get_vector_store_supervisor() -> VectorStoreSupervisor:
    """Get or create the process-wide supervisor."""
    if _supervisor is None:
        return init_vector_store_supervisor()
    return _supervisor
