"""
Pytest configuration for integration tests
"""
import pytest
import docker
import time
import logging

from mongoimage.config import settings
from mongoimage.services.checks import CheckContext
from mongoimage.services.docker_manager import DockerManager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TEST_IMAGE = settings.image_name


def _docker_available() -> bool:
    try:
        client = docker.from_env()
        client.ping()
        client.close()
        return True
    except Exception:
        return False


def pytest_collection_modifyitems(config, items):
    if TEST_IMAGE and _docker_available():
        return
    reason = "IMAGE_NAME is not set" if not TEST_IMAGE else "docker is not reachable"
    skip = pytest.mark.skip(reason=reason)
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(skip)


@pytest.fixture(scope="session")
def docker_client():
    """Get Docker client."""
    client = docker.from_env()
    yield client
    client.close()


@pytest.fixture(scope="session")
def docker_manager(docker_client):
    manager = DockerManager(client=docker_client)
    yield manager
    manager.cleanup_all()


@pytest.fixture
def check_context(docker_manager):
    ctx = CheckContext(docker_manager, TEST_IMAGE)
    yield ctx
    ctx.release()


def cleanup_test_containers(docker_client: docker.DockerClient):
    """Remove all harness containers and networks."""
    logger.info("Cleaning up test containers...")

    try:
        containers = docker_client.containers.list(
            all=True, filters={"name": settings.docker_container_prefix}
        )
        for container in containers:
            logger.info(f"Removing container: {container.name}")
            container.remove(force=True)
    except Exception as e:
        logger.warning(f"Error removing containers: {e}")

    try:
        networks = docker_client.networks.list(filters={"name": settings.docker_network_prefix})
        for network in networks:
            logger.info(f"Removing network: {network.name}")
            try:
                network.remove()
            except Exception as e:
                logger.warning(f"Could not remove network {network.name}: {e}")
    except Exception as e:
        logger.warning(f"Error removing networks: {e}")


@pytest.fixture(scope="session", autouse=True)
def setup_and_teardown(request):
    """Setup before all tests and cleanup after all tests."""
    if not TEST_IMAGE or not _docker_available():
        yield
        return

    client = docker.from_env()
    cleanup_test_containers(client)

    yield

    logger.info("Test session complete. Cleaning up...")
    cleanup_test_containers(client)
    client.close()


def wait_for_condition(condition_fn, timeout=60, interval=2, description="condition"):
    """Wait for a condition to be true."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            if condition_fn():
                return True
        except Exception as e:
            logger.debug(f"Waiting for {description}: {e}")
        time.sleep(interval)
    raise TimeoutError(f"Timeout waiting for {description} after {timeout}s")
