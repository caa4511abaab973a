"""Models returned by the security scanner."""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class IssueType(str, Enum):
    """Category of a security issue."""
    PROMPT_INJECTION = "prompt_injection"
    CODE_INJECTION = "code_injection"
    SENSITIVE_DATA = "sensitive_data"
    MALICIOUS_PATTERN = "malicious_pattern"
    SCANNER_ERROR = "scanner_error"


class IssueSeverity(str, Enum):
    """Severity of a security issue, ordered low to critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    IssueSeverity.LOW: 0,
    IssueSeverity.MEDIUM: 1,
    IssueSeverity.HIGH: 2,
    IssueSeverity.CRITICAL: 3,
}


class SecurityIssue(BaseModel):
    """A single detector hit."""
    type: IssueType
    severity: IssueSeverity
    description: str
    location: Optional[str] = Field(None, description="Matched text, truncated")
    suggestion: Optional[str] = None


class PromptScanResult(BaseModel):
    """Outcome of scanning a prompt before it reaches the model."""
    model_config = ConfigDict(populate_by_name=True)

    is_secure: bool = Field(..., alias="isSecure")
    issues: List[SecurityIssue] = Field(default_factory=list)
    sanitized_text: Optional[str] = Field(
        None, alias="sanitizedText", description="Set only when the text was changed"
    )


class CodeScanResult(BaseModel):
    """Outcome of scanning generated code before it is stored or run."""
    model_config = ConfigDict(populate_by_name=True)

    is_safe: bool = Field(..., alias="isSafe")
    issues: List[SecurityIssue] = Field(default_factory=list)
    sanitized_code: Optional[str] = Field(
        None, alias="sanitizedCode", description="Set only when code was blocked"
    )

    def issues_at_least(self, severity: IssueSeverity) -> List[SecurityIssue]:
        return [issue for issue in self.issues if issue.severity.rank >= severity.rank]
