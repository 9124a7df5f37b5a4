"""Docker Engine API client.

Provides async Docker API access for containers and images.
Supports both Unix socket and TCP connections.

The client is constructed explicitly and passed to the API wrappers;
its owner calls close() at shutdown.
"""

import json
import logging
import struct

import httpx
from pydantic import BaseModel

from spxhub.config import DockerConfig
from spxhub.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class ContainerExistsError(Exception):
    """Raised when creating a container whose name is taken."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Container {name} already exists")


# =============================================================================
# Pydantic Models
# =============================================================================


class HostConfig(BaseModel):
    """Docker HostConfig for container creation."""

    binds: list[str] = []
    port_bindings: dict[str, list[dict[str, str]]] = {}
    memory: int | None = None
    memory_swap: int | None = None
    cpu_shares: int | None = None
    restart_policy: str | None = None

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API format."""
        result: dict = {"Binds": self.binds}
        if self.port_bindings:
            result["PortBindings"] = self.port_bindings
        if self.memory is not None:
            result["Memory"] = self.memory
        if self.memory_swap is not None:
            result["MemorySwap"] = self.memory_swap
        if self.cpu_shares is not None:
            result["CpuShares"] = self.cpu_shares
        if self.restart_policy:
            result["RestartPolicy"] = {"Name": self.restart_policy}
        return result


class ContainerConfig(BaseModel):
    """Docker container configuration for creation."""

    image: str
    name: str
    cmd: list[str] = []
    env: list[str] = []
    labels: dict[str, str] = {}
    exposed_ports: dict[str, dict] = {}
    host_config: HostConfig = HostConfig()

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API JSON format."""
        result: dict = {
            "Image": self.image,
            "ExposedPorts": self.exposed_ports,
            "HostConfig": self.host_config.to_api(),
        }
        if self.cmd:
            result["Cmd"] = self.cmd
        if self.env:
            result["Env"] = self.env
        if self.labels:
            result["Labels"] = self.labels
        return result


# =============================================================================
# Docker Client
# =============================================================================


class DockerClient:
    """Async Docker API client."""

    def __init__(self, config: DockerConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._host = config.host
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def config(self) -> DockerConfig:
        return self._config

    def _create_client(self) -> httpx.AsyncClient:
        """Create a new HTTP client."""
        timeout = self._config.api_timeout
        if self._transport is not None:
            return httpx.AsyncClient(
                transport=self._transport,
                base_url="http://docker",
                timeout=timeout,
            )
        if self._host.startswith("unix://"):
            socket_path = self._host.replace("unix://", "")
            transport = httpx.AsyncHTTPTransport(uds=socket_path)
            return httpx.AsyncClient(
                transport=transport,
                base_url="http://localhost",
                timeout=timeout,
            )
        base_url = self._host
        if base_url.startswith("tcp://"):
            base_url = base_url.replace("tcp://", "http://")
        return httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def get(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = self._create_client()
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


def demux_logs(raw: bytes) -> str:
    """Decode a Docker multiplexed log stream.

    Non-TTY containers prefix each frame with an 8-byte header
    (stream type, 3 padding bytes, big-endian payload length).
    Anything that does not parse as frames is returned as plain text.
    """
    chunks: list[bytes] = []
    offset = 0
    while offset + 8 <= len(raw):
        stream_type = raw[offset]
        if stream_type not in (0, 1, 2) or raw[offset + 1 : offset + 4] != b"\x00\x00\x00":
            return raw.decode("utf-8", errors="replace")
        (size,) = struct.unpack(">I", raw[offset + 4 : offset + 8])
        chunks.append(raw[offset + 8 : offset + 8 + size])
        offset += 8 + size
    if offset != len(raw):
        return raw.decode("utf-8", errors="replace")
    return b"".join(chunks).decode("utf-8", errors="replace")


# =============================================================================
# Container API
# =============================================================================


class ContainerAPI:
    """Docker Container API operations."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client
        self._config = client.config

    async def list(self, filters: dict | None = None) -> list[dict]:
        """List containers."""
        client = await self._docker.get()
        params: dict = {"all": "true"}
        if filters:
            params["filters"] = json.dumps(filters)
        resp = await client.get("/containers/json", params=params)
        resp.raise_for_status()
        return resp.json()

    async def inspect(self, name: str) -> dict | None:
        """Inspect a container."""
        client = await self._docker.get()
        resp = await client.get(f"/containers/{name}/json")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def create(self, config: ContainerConfig) -> str:
        """Create a container.

        Raises:
            ContainerExistsError: name already in use (409)
        """
        client = await self._docker.get()
        resp = await client.post(
            "/containers/create",
            params={"name": config.name},
            json=config.to_api(),
        )
        if resp.status_code == 409:
            raise ContainerExistsError(config.name)
        resp.raise_for_status()
        logger.info("Created container: %s", config.name)
        return resp.json().get("Id", "")

    async def start(self, name: str) -> None:
        """Start a container."""
        client = await self._docker.get()
        resp = await client.post(f"/containers/{name}/start")
        if resp.status_code not in (204, 304):
            resp.raise_for_status()
        logger.info("Started container: %s", name)

    async def stop(self, name: str, timeout: int = 30) -> None:
        """Stop a container, killing it after ``timeout`` seconds."""
        client = await self._docker.get()
        resp = await client.post(
            f"/containers/{name}/stop",
            params={"t": str(timeout)},
            timeout=timeout + self._config.timeout_buffer,
        )
        if resp.status_code not in (204, 304, 404):
            resp.raise_for_status()
        logger.info("Stopped container: %s", name)

    async def remove(self, name: str, force: bool = True) -> None:
        """Remove a container."""
        client = await self._docker.get()
        resp = await client.delete(
            f"/containers/{name}", params={"force": "true" if force else "false"}
        )
        if resp.status_code == 404:
            logger.debug("Container not found: %s", name)
            return
        resp.raise_for_status()
        logger.info("Removed container: %s", name)

    async def wait(self, name: str, timeout: int | None = None) -> int:
        """Wait for container to exit and return exit code."""
        if timeout is None:
            timeout = self._config.job_timeout
        client = await self._docker.get()
        resp = await client.post(
            f"/containers/{name}/wait",
            timeout=timeout + self._config.timeout_buffer,
        )
        resp.raise_for_status()
        data = resp.json()
        exit_code = data.get("StatusCode", -1)
        logger.info("Container %s exited with code %d", name, exit_code)
        return exit_code

    async def logs(self, name: str, tail: int = 100) -> str:
        """Get the last ``tail`` lines of container output."""
        client = await self._docker.get()
        params = {"stdout": "true", "stderr": "true", "tail": str(tail)}
        resp = await client.get(f"/containers/{name}/logs", params=params)
        resp.raise_for_status()
        return demux_logs(resp.content)

    async def stats(self, name: str) -> dict:
        """One-shot stats sample (includes the previous CPU tick)."""
        client = await self._docker.get()
        resp = await client.get(f"/containers/{name}/stats", params={"stream": "false"})
        resp.raise_for_status()
        return resp.json()

    async def update(
        self,
        name: str,
        memory: int | None = None,
        cpu_shares: int | None = None,
        memory_swap: int | None = None,
    ) -> None:
        """Update resource limits of a container in place."""
        body: dict = {}
        if memory is not None:
            body["Memory"] = memory
        if cpu_shares is not None:
            body["CpuShares"] = cpu_shares
        if memory_swap is not None:
            body["MemorySwap"] = memory_swap
        client = await self._docker.get()
        resp = await client.post(f"/containers/{name}/update", json=body)
        resp.raise_for_status()
        logger.info("Updated container resources: %s", name)


# =============================================================================
# Image API
# =============================================================================


class ImageAPI:
    """Docker Image API operations."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client
        self._config = client.config

    async def exists(self, image_ref: str) -> bool:
        """Check if image exists locally."""
        client = await self._docker.get()
        resp = await client.get(f"/images/{image_ref}/json")
        return resp.status_code == 200

    async def pull(self, image_ref: str) -> None:
        """Pull image from registry."""
        client = await self._docker.get()

        if ":" in image_ref.rsplit("/", 1)[-1]:
            image, tag = image_ref.rsplit(":", 1)
        else:
            image, tag = image_ref, "latest"

        logger.info("Pulling image: %s:%s", image, tag)

        resp = await client.post(
            "/images/create",
            params={"fromImage": image, "tag": tag},
            timeout=self._config.image_pull_timeout,
        )
        resp.raise_for_status()
        logger.info(
            "Image pulled",
            extra={"event": LogEvent.IMAGE_PULLED, "image": image, "tag": tag},
        )

    async def ensure(self, image_ref: str) -> None:
        """Ensure image exists locally, pull if not."""
        if not await self.exists(image_ref):
            await self.pull(image_ref)
