# src/opsbox/sandbox/lifecycle.py
"""
Docker container lifecycle for task sessions using the docker-py SDK.

One task session owns exactly one container:

    pull_image -> create_and_start_container -> ... -> stop_container

Container ids are written to a :class:`ContainerRegistry` at creation and
removed at clean stop. :func:`cleanup_orphaned_containers` runs at the
start of a session and stops whatever a crashed earlier session left
behind.

Containers run ``/bin/sh`` without a TTY but with stdin held open, so the
shell idles until it is stopped; commands are run through separate execs
(see :mod:`opsbox.sandbox.execution`). ``auto_remove`` deletes the
container once it stops.

All docker-py calls are blocking and are run in the default executor.

Usage:
    >>> import docker
    >>> client = docker.from_env()
    >>> registry = ContainerRegistry("~/.cache/opsbox/containers.json")
    >>> await cleanup_orphaned_containers(client, registry)
    >>> await pull_image(client, "ubuntu:24.04")
    >>> container = await create_and_start_container(client, "ubuntu:24.04", registry)
    >>> ...
    >>> await stop_container(container, registry)

Requirements:
    - docker-py package (pip install docker)
    - Docker daemon running and accessible
"""

import asyncio
import logging
from typing import Any

from .container_registry import ContainerRegistry
from .exceptions import SandboxImageNotFoundError, SandboxInitializationError

logger = logging.getLogger(__name__)

MANAGED_LABEL = "opsbox.managed"
DEFAULT_STOP_TIMEOUT = 10


def connect_docker(base_url: str | None = None) -> Any:
    """
    Connect to the Docker daemon.

    Args:
        base_url: Remote daemon URL; the local environment is used when None

    Returns:
        docker.DockerClient

    Raises:
        SandboxInitializationError: If docker-py is missing or the daemon is unreachable
    """
    try:
        import docker
    except ImportError:
        raise SandboxInitializationError(
            "docker-py package not installed. Install with: pip install docker"
        )

    try:
        client = docker.DockerClient(base_url=base_url) if base_url else docker.from_env()
        version = client.version()
        logger.debug(f"Connected to Docker {version.get('Version', 'unknown')}")
        return client
    except Exception as e:
        raise SandboxInitializationError(
            f"Failed to connect to Docker daemon: {e}",
            details={"host": base_url or "local"},
        )


def _split_image(image: str) -> tuple[str, str]:
    """Split ``repo[:tag]`` (registry ports and digests aware)."""
    if "@" in image:
        return image, ""
    repository, sep, tag = image.rpartition(":")
    if not sep or "/" in tag:
        return image, "latest"
    return repository, tag


async def pull_image(client: Any, image: str) -> None:
    """
    Pull an image, following the progress stream.

    Args:
        client: docker.DockerClient
        image: Image reference, e.g. ``ubuntu:24.04``

    Raises:
        SandboxImageNotFoundError: If the engine rejects the pull or
            reports an error event in the progress stream
    """
    repository, tag = _split_image(image)
    logger.info(f"Pulling Docker image '{image}'...")

    def _pull() -> None:
        for event in client.api.pull(repository, tag=tag or None, stream=True, decode=True):
            if "error" in event:
                raise SandboxImageNotFoundError(
                    f"Failed to pull image '{image}': {event['error']}", image=image
                )
            status = event.get("status")
            if status:
                progress = event.get("progress", "")
                logger.debug(f"pull {image}: {status} {event.get('id', '')} {progress}".rstrip())

    try:
        await asyncio.get_event_loop().run_in_executor(None, _pull)
    except SandboxImageNotFoundError:
        raise
    except Exception as e:
        raise SandboxImageNotFoundError(f"Failed to pull image '{image}': {e}", image=image) from e

    logger.info(f"Successfully pulled image '{image}'")


async def create_and_start_container(
    client: Any,
    image: str,
    registry: ContainerRegistry,
) -> Any:
    """
    Create and start a task container and register its id.

    Args:
        client: docker.DockerClient
        image: Image to run (must already be present)
        registry: Registry the new container id is written to

    Returns:
        docker.models.containers.Container

    Raises:
        SandboxInitializationError: If the container cannot be created or started
    """
    loop = asyncio.get_event_loop()

    try:
        container = await loop.run_in_executor(
            None,
            lambda: client.containers.create(
                image,
                command=["/bin/sh"],
                tty=False,
                stdin_open=True,
                auto_remove=True,
                detach=True,
                labels={MANAGED_LABEL: "true"},
            ),
        )
    except Exception as e:
        raise SandboxInitializationError(
            f"Failed to create container: {e}", details={"image": image}
        ) from e

    registry.add(container.id)

    try:
        await loop.run_in_executor(None, container.start)
    except Exception as e:
        registry.remove(container.id)
        try:
            await loop.run_in_executor(None, lambda: container.remove(force=True))
        except Exception as remove_error:
            logger.warning(f"Failed to remove container {container.short_id} after start failure: {remove_error}")
        raise SandboxInitializationError(
            f"Failed to start container: {e}", details={"image": image}, sandbox_id=container.id
        ) from e

    logger.info(f"Started container {container.short_id} from image '{image}'")
    return container


async def stop_container(
    container: Any,
    registry: ContainerRegistry,
    timeout: int = DEFAULT_STOP_TIMEOUT,
) -> None:
    """
    Stop a task container. Never raises.

    A failure to stop (typically because the container is already gone)
    is logged and otherwise treated as success. The id is removed from the
    registry in every case.
    """
    try:
        await asyncio.get_event_loop().run_in_executor(None, lambda: container.stop(timeout=timeout))
        logger.info(f"Stopped container {container.short_id}")
    except Exception as e:
        logger.warning(f"Error stopping container {getattr(container, 'short_id', '?')}: {e}")
    finally:
        try:
            registry.remove(container.id)
        except Exception as e:
            logger.error(f"Failed to unregister container {container.id[:12]}: {e}")


async def cleanup_orphaned_containers(client: Any, registry: ContainerRegistry) -> int:
    """
    Stop containers left running by sessions that exited without cleanup.

    Every registered id is inspected; running containers are stopped,
    missing ones are ignored and other errors are logged. The registry is
    cleared afterwards regardless of individual failures.

    Returns:
        Number of containers stopped
    """
    import docker.errors

    container_ids = registry.list()
    if not container_ids:
        return 0

    logger.info(f"Checking {len(container_ids)} container(s) left by previous sessions")
    loop = asyncio.get_event_loop()
    stopped = 0

    try:
        for container_id in container_ids:
            try:
                container = await loop.run_in_executor(None, lambda cid=container_id: client.containers.get(cid))
                if container.status == "running":
                    await loop.run_in_executor(
                        None, lambda c=container: c.stop(timeout=DEFAULT_STOP_TIMEOUT)
                    )
                    stopped += 1
                    logger.info(f"Stopped orphaned container {container_id[:12]}")
                else:
                    logger.debug(f"Orphaned container {container_id[:12]} is {container.status}, skipping")
            except docker.errors.NotFound:
                logger.debug(f"Orphaned container {container_id[:12]} no longer exists")
            except Exception as e:
                logger.warning(f"Failed to clean up orphaned container {container_id[:12]}: {e}")
    finally:
        registry.clear()

    return stopped
