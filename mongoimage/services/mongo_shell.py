from bson import json_util
from docker.errors import DockerException
from typing import Any, List, Optional
import logging
import time

from mongoimage.config import settings
from mongoimage.models.container import Credentials, ExecResult
from mongoimage.services.docker_manager import DockerManager

logger = logging.getLogger(__name__)


class ContainerNotReady(TimeoutError):
    """The database inside a container never accepted a client connection"""


class MongoShell:
    """Runs the client binary shipped in the image against one container"""

    def __init__(
        self,
        docker_manager: DockerManager,
        container_name: str,
        credentials: Credentials,
        client_binary: Optional[str] = None
    ):
        self.docker_manager = docker_manager
        self.container_name = container_name
        self.credentials = credentials
        self.client_binary = client_binary or settings.client_binary

    def build_command(
        self,
        script: str,
        database: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        auth_database: Optional[str] = None
    ) -> List[str]:
        """Build the client argv for evaluating `script` against `database`"""
        command = [
            self.client_binary,
            database,
            "--host", "localhost",
            "--port", str(settings.mongodb_port),
            "--quiet",
        ]
        if user:
            command += ["-u", user, "-p", password or ""]
            command += ["--authenticationDatabase", auth_database or database]
        command += ["--eval", script]
        return command

    def run(
        self,
        script: str,
        database: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        auth_database: Optional[str] = None
    ) -> ExecResult:
        command = self.build_command(script, database, user, password, auth_database)
        return self.docker_manager.exec_in_container(self.container_name, command)

    def run_as_user(self, script: str) -> ExecResult:
        """Evaluate `script` as the non-admin user in its own database"""
        creds = self.credentials
        if not creds.has_user:
            raise ValueError("No non-admin user configured for this container")
        return self.run(script, creds.database, creds.user, creds.password)

    def run_as_admin(self, script: str, database: str = "admin") -> ExecResult:
        """Evaluate `script` as the admin user"""
        if not self.credentials.admin_password:
            raise ValueError("No admin password configured for this container")
        return self.run(
            script,
            database,
            user="admin",
            password=self.credentials.admin_password,
            auth_database="admin"
        )

    def eval_json(self, script: str, as_admin: bool = True) -> Any:
        """Evaluate a script that prints JSON and parse its output"""
        result = self.run_as_admin(script) if as_admin else self.run_as_user(script)
        result.check()
        output = result.stdout.strip()
        # The client may print banner lines before the payload
        lines = [line for line in output.splitlines() if line.strip()]
        if not lines:
            raise ValueError(f"Client printed no output for: {script}")
        return json_util.loads(lines[-1])

    def ping(self, as_admin: bool = False) -> bool:
        script = "db.runCommand({ping: 1}).ok"
        if as_admin or not self.credentials.has_user:
            result = self.run_as_admin(script)
        else:
            result = self.run_as_user(script)
        return result.success

    def wait_for_connection(
        self,
        attempts: Optional[int] = None,
        interval: Optional[float] = None,
        as_admin: bool = False
    ) -> None:
        """
        Poll until the client can connect and authenticate

        Args:
            attempts: Maximum number of connection attempts
            interval: Seconds to sleep between attempts
            as_admin: Authenticate as admin instead of the non-admin user

        Raises:
            ContainerNotReady: If every attempt failed
        """
        attempts = settings.readiness_attempts if attempts is None else attempts
        interval = settings.readiness_interval_seconds if interval is None else interval

        logger.info(f"Testing MongoDB connection to {self.container_name}...")
        for attempt in range(1, attempts + 1):
            try:
                if self.ping(as_admin=as_admin):
                    logger.info(f"Connected to {self.container_name} after {attempt} attempt(s)")
                    return
            except DockerException as e:
                logger.debug(f"Connection attempt {attempt} to {self.container_name} failed: {e}")
            if attempt < attempts:
                time.sleep(interval)

        logs = self.docker_manager.get_container_logs(self.container_name)
        logger.error(f"Giving up on {self.container_name}. Logs:\n{logs}")
        raise ContainerNotReady(
            f"Failed to connect to {self.container_name} after {attempts} attempts"
        )
