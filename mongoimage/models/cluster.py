from typing import List, Literal, Optional
from pydantic import BaseModel, Field


class MemberStatus(BaseModel):
    """Status of a single replica set member"""
    name: str = Field(..., description="Member name (host:port)")
    state: int = Field(..., description="Numeric member state")
    state_str: str = Field(..., description="Human-readable state string")
    health: int = Field(..., description="Health status (0=down, 1=up)")


class ReplicaSetStatus(BaseModel):
    """Status of a replica set as reported by one of its members"""
    set_name: str = Field(..., description="Replica set name")
    primary: Optional[str] = Field(None, description="Name of the current primary")
    members: List[MemberStatus] = Field(..., description="List of member statuses")
    health: Literal["ok", "degraded", "down"] = Field(
        ...,
        description="Overall health status"
    )

    @property
    def converged(self) -> bool:
        """Exactly one PRIMARY and every other member SECONDARY"""
        if not self.members:
            return False
        primaries = sum(1 for m in self.members if m.state_str == "PRIMARY")
        secondaries = sum(1 for m in self.members if m.state_str == "SECONDARY")
        return primaries == 1 and primaries + secondaries == len(self.members)
