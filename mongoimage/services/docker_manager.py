import docker
from docker.models.containers import Container
from docker.models.networks import Network
from typing import Dict, List, Optional
import logging
import time

from mongoimage.config import settings
from mongoimage.models.container import ContainerSpec, ExecResult

logger = logging.getLogger(__name__)


class DockerManager:
    """Launches and tears down containers of the image under test"""

    def __init__(self, client: Optional[docker.DockerClient] = None):
        """Initialize Docker client"""
        try:
            self.client = client or docker.from_env()
            self.client.ping()
            logger.info("Docker client initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Docker client: {e}")
            raise

        self.containers: Dict[str, Container] = {}
        self.networks: Dict[str, Network] = {}

    def _get_container_name(self, name: str) -> str:
        """Generate container name from the short name"""
        return f"{settings.docker_container_prefix}-{name}"

    def get_node_hostname(self, name: str) -> str:
        """Name other containers on the same network resolve `name` by"""
        return self._get_container_name(name)

    def get_node_connection_string(self, name: str) -> str:
        """host:port of the database in `name` for containers on the same network"""
        return f"{self.get_node_hostname(name)}:{settings.mongodb_port}"

    def _get_network_name(self, name: str) -> str:
        return f"{settings.docker_network_prefix}_{name}"

    def _get_container(self, name: str) -> Container:
        if name not in self.containers:
            container = self.client.containers.get(self._get_container_name(name))
            self.containers[name] = container
        return self.containers[name]

    def ensure_network(self, name: str) -> str:
        """Create the named bridge network unless it exists; returns its full name"""
        network_name = self._get_network_name(name)
        try:
            network = self.client.networks.get(network_name)
            logger.info(f"Using existing network: {network_name}")
        except docker.errors.NotFound:
            network = self.client.networks.create(network_name, driver="bridge")
            logger.info(f"Created network: {network_name}")
        self.networks[network_name] = network
        return network_name

    def remove_network(self, network_name: str) -> bool:
        network = self.networks.pop(network_name, None)
        if network is None:
            return False
        try:
            network.remove()
            logger.info(f"Removed network {network_name}")
            return True
        except Exception as e:
            logger.warning(f"Failed to remove network {network_name}: {e}")
            return False

    def _run_kwargs(self, spec: ContainerSpec) -> Dict:
        kwargs = {
            "image": spec.image,
            "name": self._get_container_name(spec.name),
            "environment": spec.environment,
            "detach": True,
            "remove": False,
        }
        if spec.command:
            kwargs["command"] = spec.command
        if spec.volumes:
            kwargs["volumes"] = spec.volumes
        if spec.network:
            kwargs["network"] = spec.network
        if spec.hostname:
            kwargs["hostname"] = spec.hostname
        return kwargs

    def create_container(self, spec: ContainerSpec) -> Container:
        """
        Create and start a detached container of the image

        Args:
            spec: Container description

        Returns:
            Container: The started Docker container
        """
        container_name = self._get_container_name(spec.name)

        if spec.name in self.containers:
            logger.warning(f"Container {container_name} already exists")
            return self.containers[spec.name]

        try:
            container = self.client.containers.run(**self._run_kwargs(spec))
            self.containers[spec.name] = container
            logger.info(f"Created container {container_name} from {spec.image}")
            return container
        except Exception as e:
            logger.error(f"Failed to create container {container_name}: {e}")
            raise

    def run_until_exit(self, spec: ContainerSpec, timeout: float) -> Optional[int]:
        """
        Start a container and wait for it to exit on its own

        Args:
            spec: Container description
            timeout: Seconds to wait before giving up

        Returns:
            Optional[int]: Exit code, or None if the container was still
            running at the deadline (it is killed in that case)
        """
        container = self.create_container(spec)
        deadline = time.monotonic() + timeout
        try:
            while True:
                container.reload()
                if container.status in ("exited", "dead"):
                    exit_code = container.attrs["State"]["ExitCode"]
                    logger.info(f"Container {container.name} exited with code {exit_code}")
                    return exit_code
                if time.monotonic() >= deadline:
                    break
                time.sleep(1)

            logger.info(f"Container {container.name} still running after {timeout}s, killing it")
            container.kill()
            return None
        finally:
            self.remove_container(spec.name)

    def run_once(self, command: List[str], image: Optional[str] = None) -> str:
        """Run a throwaway container to completion and return its stdout"""
        output = self.client.containers.run(
            image=image or settings.image_name,
            command=command,
            remove=True,
            stdout=True,
            stderr=False,
        )
        return output.decode("utf-8", errors="replace")

    def exec_in_container(
        self,
        name: str,
        command: List[str],
        user: Optional[str] = None
    ) -> ExecResult:
        """Execute a command inside a running container"""
        container = self._get_container(name)
        kwargs = {"demux": True}
        if user:
            kwargs["user"] = user
        exit_code, output = container.exec_run(command, **kwargs)
        stdout, stderr = output if output else (None, None)
        result = ExecResult(
            exit_code=exit_code if exit_code is not None else -1,
            stdout=(stdout or b"").decode("utf-8", errors="replace"),
            stderr=(stderr or b"").decode("utf-8", errors="replace"),
            command=command,
        )
        logger.debug(f"exec {command[0]} in {container.name}: exit {result.exit_code}")
        return result

    def read_file(self, name: str, path: str) -> str:
        """Return the contents of a file inside a running container"""
        return self.exec_in_container(name, ["cat", path]).check().stdout

    def get_container_logs(self, name: str, tail: int = 100) -> str:
        """Get logs from a container"""
        try:
            container = self._get_container(name)
            return container.logs(tail=tail).decode("utf-8", errors="replace")
        except Exception as e:
            logger.error(f"Failed to get logs for {self._get_container_name(name)}: {e}")
            return f"Error retrieving logs: {str(e)}"

    def stop_container(self, name: str) -> bool:
        """Stop a container, keeping it (and its volumes) around"""
        container_name = self._get_container_name(name)

        try:
            container = self._get_container(name)
            container.stop(timeout=settings.stop_timeout_seconds)
            logger.info(f"Stopped container {container_name}")
            return True
        except Exception as e:
            logger.error(f"Failed to stop container {container_name}: {e}")
            return False

    def remove_container(self, name: str) -> bool:
        """
        Remove a container, forcing it down if it still runs

        Returns:
            bool: True if successful
        """
        container_name = self._get_container_name(name)

        try:
            try:
                container = self._get_container(name)
            except docker.errors.NotFound:
                logger.warning(f"Container {container_name} not found")
                self.containers.pop(name, None)
                return False

            container.remove(force=True)
            logger.info(f"Removed container {container_name}")
            self.containers.pop(name, None)
            return True

        except Exception as e:
            logger.error(f"Failed to remove container {container_name}: {e}")
            return False

    def cleanup_all(self):
        """Remove every container and network launched by this manager"""
        logger.info("Cleaning up all harness resources")

        for name in list(self.containers):
            self.remove_container(name)

        for network_name in list(self.networks):
            self.remove_network(network_name)

        self.containers.clear()
        self.networks.clear()


# Global instance
docker_manager = None

def get_docker_manager() -> DockerManager:
    """Get or create the docker manager instance"""
    global docker_manager
    if docker_manager is None:
        docker_manager = DockerManager()
    return docker_manager
