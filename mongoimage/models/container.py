from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class Credentials(BaseModel):
    """Credentials handed to the image through its environment contract"""
    user: Optional[str] = Field(None, description="Non-admin user name")
    password: Optional[str] = Field(None, description="Password of the non-admin user")
    database: Optional[str] = Field(None, description="Database owned by the non-admin user")
    admin_password: Optional[str] = Field(None, description="Password of the admin user")

    def to_environment(self) -> Dict[str, str]:
        """Map the set fields to the MONGODB_* variables the image reads"""
        env = {
            "MONGODB_USER": self.user,
            "MONGODB_PASSWORD": self.password,
            "MONGODB_DATABASE": self.database,
            "MONGODB_ADMIN_PASSWORD": self.admin_password,
        }
        return {key: value for key, value in env.items() if value is not None}

    @property
    def has_user(self) -> bool:
        return bool(self.user and self.password and self.database)


class ContainerSpec(BaseModel):
    """Everything needed to launch one container of the image under test"""
    name: str = Field(..., description="Container name without the harness prefix")
    image: str = Field(..., description="Image reference")
    environment: Dict[str, str] = Field(default_factory=dict, description="Environment variables")
    volumes: Dict[str, Dict[str, str]] = Field(
        default_factory=dict,
        description="Host path to {'bind': path, 'mode': mode}"
    )
    command: Optional[List[str]] = Field(None, description="Command overriding the image default")
    network: Optional[str] = Field(None, description="Network to attach to")
    hostname: Optional[str] = Field(None, description="Hostname inside the network")

    def with_environment(self, **extra: str) -> "ContainerSpec":
        environment = dict(self.environment)
        environment.update(extra)
        return self.model_copy(update={"environment": environment})


class ExecResult(BaseModel):
    """Result from executing a command inside a container"""
    exit_code: int = Field(..., description="Process exit code")
    stdout: str = Field(default="", description="Captured standard output")
    stderr: str = Field(default="", description="Captured standard error")
    command: List[str] = Field(default_factory=list, description="Executed argv")

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def check(self) -> "ExecResult":
        """Raise if the command failed"""
        if not self.success:
            raise RuntimeError(
                f"Command {self.command} failed with code {self.exit_code}:\n"
                f"stdout: {self.stdout}\nstderr: {self.stderr}"
            )
        return self
