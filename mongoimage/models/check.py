from typing import List
from pydantic import BaseModel, Field


class CheckResult(BaseModel):
    """Outcome of one black-box check"""
    name: str = Field(..., description="Check name")
    passed: bool = Field(..., description="Whether the check passed")
    message: str = Field(default="", description="Diagnostic text")
    duration_seconds: float = Field(default=0.0, description="Wall-clock duration", ge=0)


class RunReport(BaseModel):
    """Ordered results of one harness run"""
    image: str = Field(..., description="Image under test")
    results: List[CheckResult] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return bool(self.results) and all(r.passed for r in self.results)

    @property
    def failed(self) -> List[CheckResult]:
        return [r for r in self.results if not r.passed]
