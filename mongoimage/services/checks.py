"""
Black-box checks run against containers of the image under test.

Each check takes a CheckContext, launches whatever containers it needs
through it, and raises CheckFailed with plain diagnostic text when the
image does not behave as documented. A check returns a short summary
message when it passes.
"""
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple
import logging
import os
import shutil
import tempfile

from mongoimage.config import settings
from mongoimage.models.container import ContainerSpec, Credentials, ExecResult
from mongoimage.services import documentation
from mongoimage.services.docker_manager import DockerManager
from mongoimage.services.mongo_shell import MongoShell
from mongoimage.services.replica_set import ReplicaSetHarness

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIALS = Credentials(
    user="user",
    password="password",
    database="db",
    admin_password="adminPassword"
)

# Environment knob, value, and the line it must produce in the config file
CONFIG_OPTIONS: List[Tuple[str, str, str]] = [
    ("MONGODB_NOPREALLOC", "true", "noprealloc = true"),
    ("MONGODB_SMALLFILES", "true", "smallfiles = true"),
    ("MONGODB_QUIET", "true", "quiet = true"),
]

MOUNTED_DBPATH = "/var/lib/mongodb/dbpath"

_USER_VARIABLES = ("MONGODB_USER", "MONGODB_PASSWORD", "MONGODB_DATABASE")


class CheckFailed(AssertionError):
    """The image did not behave as expected"""


def invalid_environments(admin_password: str = "admin_pass") -> List[Dict[str, str]]:
    """
    Environment combinations the image must refuse to start with

    Any strict subset of the user/password/database triple is invalid,
    with or without the admin password. The complete triple is invalid
    without the admin password. The admin password alone is valid.
    """
    values = {
        "MONGODB_USER": "user",
        "MONGODB_PASSWORD": "pass",
        "MONGODB_DATABASE": "db",
    }
    subsets: List[Dict[str, str]] = []
    for mask in range(1 << len(_USER_VARIABLES)):
        subsets.append({
            key: values[key]
            for bit, key in enumerate(_USER_VARIABLES)
            if mask & (1 << bit)
        })

    combinations = []
    for subset in subsets:
        complete = len(subset) == len(_USER_VARIABLES)
        if not complete:
            combinations.append(subset)
        if subset and not complete:
            combinations.append({**subset, "MONGODB_ADMIN_PASSWORD": admin_password})
    combinations.append(dict(values))
    return combinations


def expect_success(result: ExecResult, what: str) -> ExecResult:
    if not result.success:
        detail = (result.stderr or result.stdout).strip()
        raise CheckFailed(f"{what} failed with exit code {result.exit_code}: {detail}")
    return result


def expect_failure(result: ExecResult, what: str) -> ExecResult:
    if result.success:
        raise CheckFailed(f"{what} unexpectedly succeeded: {result.stdout.strip()}")
    return result


class CheckContext:
    """Containers and scratch directories owned by one running check"""

    def __init__(self, docker_manager: DockerManager, image: str):
        self.docker_manager = docker_manager
        self.image = image
        self.launched: List[str] = []
        self.scratch_dirs: List[Path] = []

    def spec(
        self,
        name: str,
        environment: Dict[str, str],
        volumes: Optional[Dict[str, Dict[str, str]]] = None
    ) -> ContainerSpec:
        return ContainerSpec(
            name=name,
            image=self.image,
            environment=environment,
            volumes=volumes or {}
        )

    def start(
        self,
        name: str,
        credentials: Credentials,
        extra_env: Optional[Dict[str, str]] = None,
        volumes: Optional[Dict[str, Dict[str, str]]] = None
    ) -> MongoShell:
        """Start a container and return a client bound to it"""
        spec = self.spec(name, credentials.to_environment(), volumes)
        self.docker_manager.create_container(spec.with_environment(**(extra_env or {})))
        self.launched.append(name)
        return MongoShell(self.docker_manager, name, credentials)

    def stop(self, name: str):
        """Stop and remove one container, leaving its bind mounts on the host"""
        self.docker_manager.stop_container(name)
        self.docker_manager.remove_container(name)
        if name in self.launched:
            self.launched.remove(name)

    def make_volume_dir(self) -> Path:
        """World-writable host directory for bind mounts"""
        path = Path(tempfile.mkdtemp(prefix="mongodb-testdata."))
        os.chmod(path, 0o777)
        self.scratch_dirs.append(path)
        return path

    def release(self):
        """Remove everything this check launched or created"""
        for name in list(self.launched):
            self.docker_manager.remove_container(name)
        self.launched.clear()

        for path in self.scratch_dirs:
            shutil.rmtree(path, ignore_errors=True)
            if path.exists():
                logger.warning(f"Could not fully remove scratch directory {path}")
        self.scratch_dirs.clear()


def check_container_creation(ctx: CheckContext) -> str:
    """Invalid environment combinations must stop the container from starting"""
    combinations = invalid_environments()
    for index, environment in enumerate(combinations):
        spec = ctx.spec(f"creation-{index}", environment)
        exit_code = ctx.docker_manager.run_until_exit(spec, settings.creation_timeout_seconds)
        if exit_code is None or exit_code == 0:
            outcome = "kept running" if exit_code is None else "exited successfully"
            raise CheckFailed(
                f"Container started with {sorted(environment)} {outcome}, expected it to fail"
            )
        logger.debug(f"{sorted(environment)} refused with exit code {exit_code}")
    return f"{len(combinations)} invalid combinations refused"


def check_user_privileges(ctx: CheckContext) -> str:
    """The admin and the non-admin user can log in and use their privileges"""
    creds = DEFAULT_CREDENTIALS
    shell = ctx.start("privileges", creds)
    shell.wait_for_connection()

    logger.info("Testing admin user privileges")
    sibling = f"db = db.getSiblingDB('{creds.database}');"
    expect_success(
        shell.run_as_admin(f"{sibling} db.dropUser('{creds.user}');"),
        "Dropping the user as admin"
    )
    expect_success(
        shell.run_as_admin(
            f"{sibling} db.createUser({{user: '{creds.user}', pwd: '{creds.password}',"
            " roles: ['readWrite', 'userAdmin', 'dbAdmin']});"
        ),
        "Creating the user as admin"
    )
    expect_success(
        shell.run_as_admin(f"{sibling} db.testData.insertOne({{x: 0}});"),
        "Inserting as admin"
    )

    logger.info("Testing user privileges")
    expect_success(
        shell.run_as_user(
            "db.createUser({user: 'test_user2', pwd: 'test_password2', roles: ['readWrite']});"
        ),
        "Creating a second user as user"
    )
    expect_success(shell.run_as_user("db.testData.insertOne({y: 1});"), "Inserting as user")
    expect_success(shell.run_as_user("db.testData.insertOne({z: 2});"), "Inserting as user")
    expect_success(shell.run_as_user("db.testData.find().forEach(printjson);"), "Finding as user")
    count = expect_success(
        shell.run_as_user("print(db.testData.find().count());"),
        "Counting as user"
    ).stdout.strip().splitlines()
    if not count or count[-1] != "3":
        raise CheckFailed(f"Expected 3 documents in testData, client printed {count}")
    expect_success(shell.run_as_user("db.testData.drop();"), "Dropping a collection as user")
    expect_success(shell.run_as_user("db.dropDatabase();"), "Dropping the database as user")

    wrong = MongoShell(
        ctx.docker_manager,
        "privileges",
        creds.model_copy(update={"password": "not-the-password"})
    )
    expect_failure(wrong.run_as_user("db.runCommand({ping: 1});"), "Login with a wrong password")

    logger.info("Testing admin-only container")
    admin_only = Credentials(admin_password=creds.admin_password)
    admin_shell = ctx.start("privileges-admin", admin_only)
    admin_shell.wait_for_connection(as_admin=True)
    expect_success(
        admin_shell.run_as_admin("db.adminCommand({listDatabases: 1}).ok;"),
        "Listing databases as admin"
    )
    return "user and admin privileges verified"


def check_configuration_options(ctx: CheckContext) -> str:
    """Each configuration knob ends up in the config file"""
    for env_var, value, config_part in CONFIG_OPTIONS:
        name = f"configuration-{env_var.lower()}"
        shell = ctx.start(name, DEFAULT_CREDENTIALS, extra_env={env_var: value})
        shell.wait_for_connection()
        content = ctx.docker_manager.read_file(name, settings.config_file_path)
        if config_part not in content:
            raise CheckFailed(
                f"{settings.config_file_path} does not contain '{config_part}' "
                f"when started with {env_var}={value}"
            )
        ctx.stop(name)
    return f"{len(CONFIG_OPTIONS)} configuration options verified"


def check_mount_config(ctx: CheckContext) -> str:
    """A mounted config file and data directory are honoured"""
    creds = DEFAULT_CREDENTIALS
    volume_dir = ctx.make_volume_dir()
    config_file = volume_dir / "mongod.conf"
    config_file.write_text(
        f"dbpath={MOUNTED_DBPATH}\nunixSocketPrefix = /var/lib/mongodb\n",
        encoding="utf-8"
    )
    os.chmod(config_file, 0o666)

    volumes = {
        str(config_file): {"bind": settings.config_file_path, "mode": "rw"},
        str(volume_dir): {"bind": MOUNTED_DBPATH, "mode": "rw"},
    }
    shell = ctx.start("mount-config", creds, volumes=volumes)
    shell.wait_for_connection()

    expect_success(shell.run_as_user("db.testData.insertOne({m: 1});"), "Inserting as user")
    if not (volume_dir / "mongod.lock").exists():
        raise CheckFailed("Mongo server is not using the mounted dbpath")
    return "mounted config file and dbpath used"


def check_change_password(ctx: CheckContext) -> str:
    """Restarting on the same data volume with new passwords replaces the old ones"""
    volume_dir = ctx.make_volume_dir()
    volumes = {str(volume_dir): {"bind": settings.data_path, "mode": "rw"}}

    old = DEFAULT_CREDENTIALS
    shell = ctx.start("password-old", old, volumes=volumes)
    shell.wait_for_connection()
    expect_success(shell.run_as_user("db.testData.insertOne({a: 1});"), "Inserting as user")
    ctx.stop("password-old")

    new = old.model_copy(update={"password": "newPassword", "admin_password": "newAdminPassword"})
    shell = ctx.start("password-new", new, volumes=volumes)
    shell.wait_for_connection()
    shell.wait_for_connection(as_admin=True)

    count = expect_success(
        shell.run_as_user("print(db.testData.find().count());"),
        "Counting as user"
    ).stdout.strip().splitlines()
    if not count or count[-1] != "1":
        raise CheckFailed(f"Data written before the restart is gone, client printed {count}")

    stale = MongoShell(ctx.docker_manager, "password-new", old)
    expect_failure(stale.run_as_user("db.runCommand({ping: 1});"), "Login with the old password")
    expect_failure(stale.run_as_admin("db.runCommand({ping: 1});"), "Login with the old admin password")
    return "passwords changed, data kept"


def check_replica_set(ctx: CheckContext) -> str:
    """Members started from the image converge to one primary"""
    harness = ReplicaSetHarness(
        ctx.docker_manager,
        ctx.image,
        admin_password=DEFAULT_CREDENTIALS.admin_password
    )
    try:
        harness.start_members()
        harness.initiate()
        status = harness.wait_for_convergence()
    finally:
        harness.cleanup()
    return f"{len(status.members)} members converged, primary {status.primary}"


def check_documentation(ctx: CheckContext) -> str:
    """The manual and the image help page carry the required content"""
    problems = documentation.check_readme() if settings.readme_path else []
    if settings.help_file_path:
        help_text = documentation.read_help_page(ctx.docker_manager, ctx.image)
        problems += documentation.check_help_page(help_text)
    if problems:
        raise CheckFailed("; ".join(problems))
    return "documentation complete"


Check = Callable[[CheckContext], str]

# Run order matters: cheap failures first, the replica set last
CHECKS: List[Tuple[str, Check]] = [
    ("documentation", check_documentation),
    ("container_creation", check_container_creation),
    ("user_privileges", check_user_privileges),
    ("configuration_options", check_configuration_options),
    ("mount_config", check_mount_config),
    ("change_password", check_change_password),
    ("replica_set", check_replica_set),
]


def select_checks(names: Optional[List[str]] = None) -> List[Tuple[str, Check]]:
    """Checks to run in their fixed order; raises ValueError on unknown names"""
    if not names:
        return list(CHECKS)
    known = {name for name, _ in CHECKS}
    unknown = [name for name in names if name not in known]
    if unknown:
        raise ValueError(f"Unknown check(s): {', '.join(unknown)}")
    return [(name, check) for name, check in CHECKS if name in names]
