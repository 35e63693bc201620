"""Fake docker objects shared by the unit tests."""
import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from docker.errors import NotFound

from mongoimage.config import settings
from mongoimage.services.docker_manager import DockerManager

ExecOutput = Tuple[int, Tuple[Optional[bytes], Optional[bytes]]]


class FakeContainer:
    def __init__(self, name: str, environment: Optional[Dict[str, str]] = None,
                 status: str = "running", exit_code: int = 0) -> None:
        self.name = name
        self.environment = dict(environment or {})
        self.status = status
        self.attrs = {"State": {"ExitCode": exit_code}}
        self.exec_calls: List[List[str]] = []
        self.exec_handler: Optional[Callable[[List[str]], ExecOutput]] = None
        self.reload_count = 0
        self.stopped = False
        self.killed = False
        self.removed = False

    def reload(self) -> None:
        self.reload_count += 1

    def exec_run(self, cmd: List[str], demux: bool = False, user: Optional[str] = None) -> ExecOutput:
        self.exec_calls.append(cmd)
        if self.exec_handler is not None:
            return self.exec_handler(cmd)
        return 0, (b"", None)

    def logs(self, tail: int = 100) -> bytes:
        return b"mongod log line\n"

    def stop(self, timeout: Optional[int] = None) -> None:
        self.stopped = True
        self.status = "exited"

    def kill(self) -> None:
        self.killed = True
        self.status = "exited"

    def remove(self, force: bool = False) -> None:
        self.removed = True


class FakeContainers:
    def __init__(self) -> None:
        self.created: Dict[str, FakeContainer] = {}
        self.run_calls: List[Dict] = []
        self.run_once_output = b""
        self.factory: Callable[[Dict], FakeContainer] = lambda kwargs: FakeContainer(
            kwargs["name"], kwargs.get("environment")
        )

    def run(self, **kwargs):
        self.run_calls.append(kwargs)
        if not kwargs.get("detach"):
            return self.run_once_output
        container = self.factory(kwargs)
        self.created[kwargs["name"]] = container
        return container

    def get(self, name: str) -> FakeContainer:
        container = self.created.get(name)
        if container is None or container.removed:
            raise NotFound(f"missing: {name}")
        return container


class FakeNetwork:
    def __init__(self, name: str) -> None:
        self.name = name
        self.removed = False

    def remove(self) -> None:
        self.removed = True


class FakeNetworks:
    def __init__(self) -> None:
        self.existing: Dict[str, FakeNetwork] = {}
        self.created: List[str] = []

    def get(self, name: str) -> FakeNetwork:
        if name not in self.existing:
            raise NotFound(f"missing: {name}")
        return self.existing[name]

    def create(self, name: str, driver: str = "bridge") -> FakeNetwork:
        network = FakeNetwork(name)
        self.existing[name] = network
        self.created.append(name)
        return network


class FakeDockerClient:
    def __init__(self) -> None:
        self.containers = FakeContainers()
        self.networks = FakeNetworks()

    def ping(self) -> bool:
        return True


class FakeMongoImage:
    """Scripted stand-in for the image: auth from env, a document counter per data dir"""

    KNOBS = {
        "MONGODB_NOPREALLOC": "noprealloc",
        "MONGODB_SMALLFILES": "smallfiles",
        "MONGODB_QUIET": "quiet",
    }

    def __init__(self, client: FakeDockerClient) -> None:
        self.client = client
        self.documents: Dict[str, int] = {}
        self.ignored_knobs: List[str] = []
        self.replica_states: List[str] = ["PRIMARY", "SECONDARY", "SECONDARY"]
        # Misbehaviours the checks must catch
        self.accept_any_password = False
        self.remember_old_passwords: Tuple[str, ...] = ()
        self.wipe_data_on_restart = False
        self.skip_lock_file = False
        self.first_environments: Dict[str, Dict[str, str]] = {}
        client.containers.factory = self.create

    def create(self, kwargs: Dict) -> FakeContainer:
        container = FakeContainer(kwargs["name"], kwargs.get("environment"))
        data_key = kwargs["name"]
        for host_path, bind in (kwargs.get("volumes") or {}).items():
            if bind["bind"] in (settings.data_path, "/var/lib/mongodb/dbpath"):
                data_key = host_path
            if bind["bind"] == "/var/lib/mongodb/dbpath" and not self.skip_lock_file:
                (Path(host_path) / "mongod.lock").touch()
        if data_key in self.first_environments and self.wipe_data_on_restart:
            self.documents[data_key] = 0
        self.first_environments.setdefault(data_key, dict(container.environment))
        container.exec_handler = lambda cmd: self.execute(container, data_key, cmd)
        return container

    def config_file(self, env: Dict[str, str]) -> str:
        lines = ["port = 27017"]
        for knob, option in self.KNOBS.items():
            if env.get(knob) == "true" and knob not in self.ignored_knobs:
                lines.append(f"{option} = true")
        return "\n".join(lines) + "\n"

    def authenticated(self, env: Dict[str, str], cmd: List[str], data_key: str = "") -> bool:
        if "-u" not in cmd:
            return False
        user = cmd[cmd.index("-u") + 1]
        password = cmd[cmd.index("-p") + 1]
        if self.accept_any_password and user in ("admin", env.get("MONGODB_USER")):
            return True
        first = self.first_environments.get(data_key)
        if user in self.remember_old_passwords and first and self.password_matches(first, user, password):
            return True
        return self.password_matches(env, user, password)

    @staticmethod
    def password_matches(env: Dict[str, str], user: str, password: str) -> bool:
        if user == "admin":
            return password == env.get("MONGODB_ADMIN_PASSWORD")
        if user == env.get("MONGODB_USER"):
            return password == env.get("MONGODB_PASSWORD")
        return user == "test_user2" and password == "test_password2"

    def execute(self, container: FakeContainer, data_key: str, cmd: List[str]) -> ExecOutput:
        if cmd[0] == "cat":
            if cmd[1] == settings.config_file_path:
                return 0, (self.config_file(container.environment).encode(), None)
            return 1, (None, b"No such file or directory")

        if not self.authenticated(container.environment, cmd, data_key):
            return 1, (None, b"Error: Authentication failed.")

        script = cmd[cmd.index("--eval") + 1]
        count = self.documents.setdefault(data_key, 0)
        if "insertOne" in script:
            self.documents[data_key] = count + 1
        elif "find().count()" in script:
            return 0, (f"{count}\n".encode(), None)
        elif "drop" in script and "dropUser" not in script:
            self.documents[data_key] = 0
        elif "rs.initiate" in script:
            return 0, (b"ok\n", None)
        elif "rs.status" in script:
            members = [
                {"name": f"{settings.docker_container_prefix}-rs0-member{i + 1}:27017",
                 "state": 1 if s == "PRIMARY" else 2, "stateStr": s, "health": 1}
                for i, s in enumerate(self.replica_states)
            ]
            return 0, (json.dumps(members).encode() + b"\n", None)
        return 0, (b"1\n", None)


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    """Polling loops must not slow the unit tests down."""
    monkeypatch.setattr("time.sleep", lambda seconds: None)


@pytest.fixture
def fake_client() -> FakeDockerClient:
    return FakeDockerClient()


@pytest.fixture
def docker_manager(fake_client) -> DockerManager:
    return DockerManager(client=fake_client)


@pytest.fixture
def fake_image(fake_client) -> FakeMongoImage:
    return FakeMongoImage(fake_client)
