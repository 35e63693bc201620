from typing import Dict, List, Optional
import json
import logging
import time

from mongoimage.config import settings
from mongoimage.models.cluster import MemberStatus, ReplicaSetStatus
from mongoimage.models.container import ContainerSpec, Credentials
from mongoimage.services.docker_manager import DockerManager
from mongoimage.services.mongo_shell import MongoShell

logger = logging.getLogger(__name__)

STATUS_SCRIPT = (
    "JSON.stringify(rs.status().members.map(function (m) {"
    " return {name: m.name, state: m.state, stateStr: m.stateStr, health: m.health}; }))"
)


class ReplicaSetHarness:
    """Brings up replica set members from the image and watches them converge"""

    def __init__(
        self,
        docker_manager: DockerManager,
        image: str,
        admin_password: str,
        replica_set_name: Optional[str] = None
    ):
        self.docker_manager = docker_manager
        self.image = image
        self.replica_set_name = replica_set_name or settings.replica_set_name
        self.credentials = Credentials(admin_password=admin_password)
        self.members: List[str] = []
        self.network: Optional[str] = None

    def _member_name(self, index: int) -> str:
        return f"{self.replica_set_name}-member{index + 1}"

    def shell(self, member: Optional[str] = None) -> MongoShell:
        """Client bound to `member` (default: the first member)"""
        return MongoShell(self.docker_manager, member or self.members[0], self.credentials)

    def start_members(self, count: Optional[int] = None) -> List[str]:
        """
        Start replica set members on a dedicated network

        Args:
            count: Number of members to start

        Returns:
            List[str]: Short names of the started members
        """
        if self.members:
            raise ValueError(f"Replica set '{self.replica_set_name}' already started")

        count = count or settings.replica_member_count
        self.network = self.docker_manager.ensure_network(self.replica_set_name)
        logger.info(f"Starting replica set '{self.replica_set_name}' with {count} members")

        for i in range(count):
            name = self._member_name(i)
            spec = ContainerSpec(
                name=name,
                image=self.image,
                environment={
                    **self.credentials.to_environment(),
                    "MONGODB_REPLICA_NAME": self.replica_set_name,
                    "MONGODB_KEYFILE_VALUE": settings.replica_keyfile_value,
                },
                command=settings.replica_command or None,
                network=self.network,
                hostname=self.docker_manager.get_node_hostname(name),
            )
            self.docker_manager.create_container(spec)
            self.members.append(name)
            logger.info(f"Created member {name}")

        for name in self.members:
            self.shell(name).wait_for_connection(as_admin=True)

        return self.members

    def initiate(self) -> None:
        """Initiate the replica set from the first member"""
        if not self.members:
            raise ValueError("No members started")

        rs_config = {
            "_id": self.replica_set_name,
            "members": [
                {"_id": idx, "host": self.docker_manager.get_node_connection_string(name)}
                for idx, name in enumerate(self.members)
            ],
        }
        logger.info(f"Initiating replica set with config: {rs_config}")
        script = (
            f"var r = rs.initiate({json.dumps(rs_config)});"
            " print(r.ok ? \"ok\" : r.codeName);"
        )
        result = self.shell().run_as_admin(script)
        output = result.stdout.strip()
        outcome = output.splitlines()[-1] if output else ""
        if result.success and outcome == "ok":
            logger.info("Replica set initiated")
        elif outcome == "AlreadyInitialized" or "already initialized" in result.stderr.lower():
            logger.info("Replica set was already initialized by the image")
        else:
            raise RuntimeError(f"rs.initiate failed: {output or result.stderr.strip()}")

    def get_status(self, member: Optional[str] = None) -> ReplicaSetStatus:
        """
        Get current status of the replica set as seen by one member

        Returns:
            ReplicaSetStatus: Current status
        """
        raw_members = self.shell(member).eval_json(STATUS_SCRIPT, as_admin=True)

        members = []
        primary = None
        for member_data in raw_members:
            member_status = MemberStatus(
                name=member_data.get("name", ""),
                state=member_data.get("state", -1),
                state_str=member_data.get("stateStr", "UNKNOWN"),
                health=int(member_data.get("health", 0)),
            )
            members.append(member_status)
            if member_status.state_str == "PRIMARY":
                primary = member_status.name

        healthy_count = sum(1 for m in members if m.health == 1)
        if members and healthy_count == len(members):
            health = "ok"
        elif healthy_count > len(members) // 2:
            health = "degraded"
        else:
            health = "down"

        return ReplicaSetStatus(
            set_name=self.replica_set_name,
            primary=primary,
            members=members,
            health=health
        )

    def wait_for_convergence(
        self,
        timeout: Optional[float] = None,
        interval: Optional[float] = None
    ) -> ReplicaSetStatus:
        """
        Poll until one member is PRIMARY and the rest are SECONDARY

        Raises:
            TimeoutError: If the set did not converge in time
        """
        timeout = settings.replica_convergence_timeout_seconds if timeout is None else timeout
        interval = settings.replica_poll_interval_seconds if interval is None else interval

        logger.info("Waiting for replica set to elect primary...")
        last_status = None
        start = time.monotonic()
        while time.monotonic() - start < timeout:
            try:
                last_status = self.get_status()
                member_states = [m.state_str for m in last_status.members]
                logger.debug(f"Member states: {member_states}")
                if last_status.converged and len(last_status.members) == len(self.members):
                    logger.info(f"Replica set converged, primary: {last_status.primary}")
                    return last_status
            except (RuntimeError, ValueError) as e:
                logger.debug(f"Waiting for replica set status: {e}")
            time.sleep(interval)

        states: Dict[str, str] = {}
        if last_status:
            states = {m.name: m.state_str for m in last_status.members}
        raise TimeoutError(
            f"Replica set '{self.replica_set_name}' did not converge after {timeout}s: {states}"
        )

    def cleanup(self):
        """Remove all members and the replica set network"""
        logger.info(f"Cleaning up replica set '{self.replica_set_name}'")
        for name in self.members:
            self.docker_manager.remove_container(name)
        if self.network:
            self.docker_manager.remove_network(self.network)
        self.members = []
        self.network = None
