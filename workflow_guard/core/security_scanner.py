"""Pattern-based security scanning of prompts and generated code.

Both scans run on untrusted model input and output, so every pattern uses
bounded quantifiers, inputs are capped in length, and the number of matches
reported per pattern is limited. A detector that fails flags the input
instead of letting it through.
"""

import math
import re
from collections import Counter
from itertools import islice
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Pattern
from urllib.parse import urlparse

from ..config import DEFAULT_ALLOWED_DOMAINS
from ..models.security import (
    IssueType,
    IssueSeverity,
    SecurityIssue,
    PromptScanResult,
    CodeScanResult,
)
from .logging import get_logger

logger = get_logger(__name__)

FILTERED_MARKER = "[FILTERED]"
TRUNCATED_MARKER = "... [TRUNCATED]"
BLOCKED_MARKER = "/* [BLOCKED_DANGEROUS_FUNCTION] */"

MAX_MATCHES_PER_PATTERN = 20
MAX_URLS_CHECKED = 50
LOCATION_PREVIEW = 100
ENTROPY_THRESHOLD = 4.5

INVISIBLE_CHARACTERS = re.compile("[\u200b-\u200f\u202a-\u202e\u2060-\u2064\u2066-\u2069\ufeff]")
URL_PATTERN = re.compile(r"https?://[^\s\"'`;,)}\]]{1,2048}")
STRING_LITERAL = re.compile(r"[\"'`]([^\"'`\s]{20,256})[\"'`]")


class Detector(NamedTuple):
    """A compiled pattern and the issue it raises when it matches."""
    name: str
    pattern: Pattern
    issue_type: IssueType
    severity: IssueSeverity
    description: str
    suggestion: str


def _detector(name, regex, issue_type, severity, description, suggestion, flags=0) -> Detector:
    return Detector(name, re.compile(regex, flags), issue_type, severity, description, suggestion)


_INPUT_SUGGESTION = "Use input validation and sanitization before processing"
_SANDBOX_SUGGESTION = "Execute code in a secure sandbox environment"

PROMPT_DETECTORS = (
    _detector(
        "instruction_override",
        r"ignore\s{1,10}(?:previous|above|all|prior)\s{1,10}(?:instructions?|prompts?|commands?)",
        IssueType.PROMPT_INJECTION, IssueSeverity.HIGH,
        "Potential prompt injection: ignore previous instructions",
        _INPUT_SUGGESTION, re.IGNORECASE,
    ),
    _detector(
        "role_manipulation",
        r"(?:system|assistant|user):\s{0,10}(?:now|from now on|instead)",
        IssueType.PROMPT_INJECTION, IssueSeverity.HIGH,
        "Potential role manipulation attempt",
        _INPUT_SUGGESTION, re.IGNORECASE,
    ),
    _detector(
        "system_tag",
        r"\[/?SYSTEM\]|\[/?INST\]|<\|?/?(?:system|im_start|im_end)\|?>",
        IssueType.PROMPT_INJECTION, IssueSeverity.MEDIUM,
        "Potential system tag injection",
        _INPUT_SUGGESTION, re.IGNORECASE,
    ),
    _detector(
        "code_block",
        r"```[^`]{0,5000}```",
        IssueType.PROMPT_INJECTION, IssueSeverity.LOW,
        "Code block detected - may contain injection attempts",
        _INPUT_SUGGESTION,
    ),
    _detector(
        "script_tag",
        r"</?script\b[^>]{0,200}>",
        IssueType.CODE_INJECTION, IssueSeverity.CRITICAL,
        "Script tag detected",
        _SANDBOX_SUGGESTION, re.IGNORECASE,
    ),
)

CODE_DETECTORS = (
    # Dynamic evaluation
    _detector("eval", r"\beval\s{0,10}\(",
              IssueType.CODE_INJECTION, IssueSeverity.CRITICAL,
              "eval() function usage - allows arbitrary code execution",
              "Use JSON.parse() or safe alternatives instead of eval()"),
    _detector("function_constructor", r"\bFunction\s{0,10}\(",
              IssueType.CODE_INJECTION, IssueSeverity.CRITICAL,
              "Function constructor usage - allows dynamic code execution",
              "Define functions statically instead of using Function constructor"),
    _detector("python_exec", r"\b(?:exec|__import__)\s{0,10}\(",
              IssueType.CODE_INJECTION, IssueSeverity.CRITICAL,
              "Dynamic execution primitive - allows arbitrary code execution",
              "Define behaviour statically instead of executing generated strings"),
    _detector("string_timer", r"\bset(?:Timeout|Interval)\s{0,10}\(\s{0,10}[\"'`]",
              IssueType.CODE_INJECTION, IssueSeverity.HIGH,
              "Timer with string argument - potential code injection",
              "Pass a function instead of a string"),
    # Process and OS escape hatches
    _detector("child_process", r"require\s{0,10}\(\s{0,10}[\"'`]child_process[\"'`]",
              IssueType.CODE_INJECTION, IssueSeverity.CRITICAL,
              "child_process module - allows system command execution",
              "Use controlled APIs instead of direct system access"),
    _detector("subprocess", r"\b(?:import\s{1,10}subprocess|from\s{1,10}subprocess\s{1,10}import)\b",
              IssueType.CODE_INJECTION, IssueSeverity.CRITICAL,
              "subprocess module - allows system command execution",
              "Use controlled APIs instead of direct system access"),
    _detector("os_command", r"\bos\.(?:system|popen|exec[a-z]{0,3}|spawn[a-z]{0,3})\s{0,10}\(",
              IssueType.CODE_INJECTION, IssueSeverity.CRITICAL,
              "OS command execution",
              "Use controlled APIs instead of direct system access"),
    _detector("process_exit", r"\bprocess\.exit\s{0,10}\(",
              IssueType.CODE_INJECTION, IssueSeverity.MEDIUM,
              "process.exit - can terminate the application",
              "Return an error result instead of exiting"),
    # Filesystem, credential and storage access
    _detector("fs_module", r"require\s{0,10}\(\s{0,10}[\"'`]fs(?:/promises)?[\"'`]",
              IssueType.CODE_INJECTION, IssueSeverity.HIGH,
              "fs module - allows file system access",
              "Use controlled file operations or avoid filesystem access"),
    _detector("net_module", r"require\s{0,10}\(\s{0,10}[\"'`](?:net|dgram|dns)[\"'`]",
              IssueType.CODE_INJECTION, IssueSeverity.HIGH,
              "Low-level network module - allows raw network operations",
              "Use the platform HTTP block for network access"),
    _detector("env_access", r"\bprocess\.env\s{0,10}\[|\bos\.environ\b",
              IssueType.SENSITIVE_DATA, IssueSeverity.MEDIUM,
              "Environment variable access - potential sensitive data exposure",
              "Pass required values through block configuration"),
    _detector("cookie_access", r"\bdocument\.cookie\b",
              IssueType.SENSITIVE_DATA, IssueSeverity.MEDIUM,
              "Cookie access - potential sensitive data exposure",
              "Avoid reading browser credentials from workflow code"),
    _detector("web_storage", r"\b(?:localStorage|sessionStorage)\b",
              IssueType.SENSITIVE_DATA, IssueSeverity.MEDIUM,
              "Local storage access - potential data exposure",
              "Avoid reading browser storage from workflow code"),
    _detector("location_assign", r"\bwindow\.location\s{0,10}=",
              IssueType.MALICIOUS_PATTERN, IssueSeverity.MEDIUM,
              "Location manipulation - potential redirect attacks",
              "Avoid navigating the browser from workflow code"),
    # Outbound network calls
    _detector("http_request", r"\bXMLHttpRequest\b|\bfetch\s{0,10}\(|\brequests\.(?:get|post|put|patch|delete)\s{0,10}\(",
              IssueType.CODE_INJECTION, IssueSeverity.MEDIUM,
              "Network requests - potential data exfiltration",
              "Verify that outbound requests are necessary and trusted"),
    _detector("websocket", r"\bWebSocket\s{0,10}\(",
              IssueType.CODE_INJECTION, IssueSeverity.MEDIUM,
              "WebSocket usage - potential data leakage",
              "Verify that outbound connections are necessary and trusted"),
)

SECRET_DETECTORS = (
    _detector("secret_assignment",
              r"(?:api[_-]?key|secret|password|token)\s{0,10}[:=]\s{0,10}[\"'`][^\"'`\n]{8,256}[\"'`]",
              IssueType.SENSITIVE_DATA, IssueSeverity.HIGH,
              "Potential hardcoded API key or secret",
              "Use environment variables or secure configuration", re.IGNORECASE),
    _detector("base64_literal", r"[\"'`][A-Za-z0-9+/]{32,512}={0,2}[\"'`]",
              IssueType.SENSITIVE_DATA, IssueSeverity.HIGH,
              "Potential base64-encoded secret",
              "Use environment variables or secure configuration"),
)

LOOP_DETECTORS = (
    _detector("while_true", r"\bwhile\s{0,10}\(\s{0,10}(?:true|1)\s{0,10}\)|\bwhile\s{1,10}True\s{0,10}:",
              IssueType.MALICIOUS_PATTERN, IssueSeverity.HIGH,
              "Potential infinite loop detected",
              "Add proper loop conditions and limits"),
    _detector("empty_for", r"\bfor\s{0,10}\(\s{0,10};\s{0,10};\s{0,10}\)",
              IssueType.MALICIOUS_PATTERN, IssueSeverity.HIGH,
              "Potential infinite loop detected",
              "Add proper loop conditions and limits"),
)


def shannon_entropy(value: str) -> float:
    """Bits of entropy per character."""
    if not value:
        return 0.0
    length = len(value)
    return -sum((count / length) * math.log2(count / length) for count in Counter(value).values())


def _preview(text: str) -> str:
    if len(text) <= LOCATION_PREVIEW:
        return text
    return text[:LOCATION_PREVIEW] + "..."


class SecurityScanner:
    """Scans prompts before generation and generated code before storage or execution."""

    def __init__(
        self,
        allowed_domains: Optional[Iterable[str]] = None,
        max_prompt_length: int = 50000,
        max_code_length: int = 200000,
    ):
        domains = DEFAULT_ALLOWED_DOMAINS if allowed_domains is None else allowed_domains
        self.allowed_domains = [domain.lower().strip() for domain in domains if domain]
        self.max_prompt_length = max_prompt_length
        self.max_code_length = max_code_length

    def sanitize_prompt_input(self, text: str) -> PromptScanResult:
        """
        Scan and sanitize a natural-language prompt.

        The input is truncated to the length cap first, invisible formatting
        characters are stripped, then the ordered detectors run. High and
        critical matches are replaced with a redaction marker.

        Args:
            text: Untrusted prompt text

        Returns:
            PromptScanResult; sanitized_text is set only when the text changed
        """
        issues: List[SecurityIssue] = []
        sanitized = text if isinstance(text, str) else str(text)

        if len(sanitized) > self.max_prompt_length:
            issues.append(SecurityIssue(
                type=IssueType.PROMPT_INJECTION,
                severity=IssueSeverity.MEDIUM,
                description="Input exceeds maximum length",
                suggestion="Limit input to reasonable size",
            ))
            sanitized = sanitized[:self.max_prompt_length] + TRUNCATED_MARKER

        stripped = INVISIBLE_CHARACTERS.sub("", sanitized)
        if stripped != sanitized:
            issues.append(SecurityIssue(
                type=IssueType.PROMPT_INJECTION,
                severity=IssueSeverity.MEDIUM,
                description="Suspicious unicode characters detected",
                suggestion="Remove zero-width and directional characters",
            ))
            sanitized = stripped

        for detector in PROMPT_DETECTORS:
            try:
                match = detector.pattern.search(sanitized)
                if match is None:
                    continue
                issues.append(self._issue(detector, match.group(0)))
                if detector.severity.rank >= IssueSeverity.HIGH.rank:
                    sanitized = detector.pattern.sub(FILTERED_MARKER, sanitized)
            except Exception as e:
                logger.error(f"Prompt detector '{detector.name}' failed: {e}")
                issues.append(self._scanner_error(detector.name, IssueSeverity.HIGH))

        is_secure = not any(issue.severity.rank >= IssueSeverity.HIGH.rank for issue in issues)
        logger.debug(f"Prompt security validation: {len(issues)} issues found")

        return PromptScanResult(
            is_secure=is_secure,
            issues=issues,
            sanitized_text=sanitized if sanitized != text else None,
        )

    def analyze_code_security(self, code: str) -> CodeScanResult:
        """
        Scan generated code for dangerous primitives, secrets and exfiltration.

        Critical matches are replaced with a blocking comment. Code longer
        than the scan cap is flagged critical and only its prefix is scanned.

        Args:
            code: Untrusted code from a custom block

        Returns:
            CodeScanResult; sanitized_code is set only when code was blocked
        """
        issues: List[SecurityIssue] = []
        source = code if isinstance(code, str) else str(code)

        if len(source) > self.max_code_length:
            issues.append(SecurityIssue(
                type=IssueType.MALICIOUS_PATTERN,
                severity=IssueSeverity.CRITICAL,
                description=f"Code exceeds the maximum scannable length of {self.max_code_length} characters",
                suggestion="Split the logic into smaller blocks",
            ))
            source = source[:self.max_code_length]

        sanitized = source

        for detector in CODE_DETECTORS:
            try:
                matches = [match.group(0) for match in
                           islice(detector.pattern.finditer(source), MAX_MATCHES_PER_PATTERN)]
                for matched in matches:
                    issues.append(self._issue(detector, matched))
                if matches and detector.severity == IssueSeverity.CRITICAL:
                    sanitized = detector.pattern.sub(BLOCKED_MARKER, sanitized)
            except Exception as e:
                logger.error(f"Code detector '{detector.name}' failed: {e}")
                issues.append(self._scanner_error(detector.name, IssueSeverity.CRITICAL))

        self._guarded(issues, "outbound_urls", self._check_urls, source)
        self._guarded(issues, "secrets", self._check_secrets, source)
        self._guarded(issues, "loops", self._check_loops, source)

        is_safe = not any(issue.severity == IssueSeverity.CRITICAL for issue in issues)
        logger.debug(f"Code security analysis: {len(issues)} issues found")

        return CodeScanResult(
            is_safe=is_safe,
            issues=issues,
            sanitized_code=sanitized if sanitized != source else None,
        )

    def is_allowed_domain(self, url: str) -> bool:
        """Check a URL's host against the allow-list by exact or subdomain match."""
        try:
            host = urlparse(url).hostname
        except (ValueError, TypeError, AttributeError):
            return False
        if not host:
            return False
        return any(host == domain or host.endswith("." + domain) for domain in self.allowed_domains)

    def create_sandbox_config(self) -> Dict[str, Any]:
        """Execution limits for running custom block code in an isolated sandbox."""
        return {
            "timeout": 30000,
            "memory": 128 * 1024 * 1024,
            "allowedModules": ["crypto", "util", "url", "querystring", "path"],
            "blockedModules": [
                "child_process", "fs", "net", "http", "https",
                "dgram", "dns", "os", "process", "cluster",
            ],
            "blockedGlobals": [
                "process", "global", "Buffer", "require",
                "module", "exports", "__dirname", "__filename",
            ],
            "allowedAPIs": [
                "JSON", "Math", "Date", "String", "Number", "Boolean", "Array",
                "Object", "RegExp", "parseInt", "parseFloat", "isNaN", "isFinite",
                "encodeURIComponent", "decodeURIComponent",
            ],
        }

    def _check_urls(self, source: str) -> List[SecurityIssue]:
        issues = []
        for match in islice(URL_PATTERN.finditer(source), MAX_URLS_CHECKED):
            url = match.group(0)
            if not self.is_allowed_domain(url):
                issues.append(SecurityIssue(
                    type=IssueType.SENSITIVE_DATA,
                    severity=IssueSeverity.MEDIUM,
                    description=f"Potentially suspicious URL: {_preview(url)}",
                    location=_preview(url),
                    suggestion="Verify if this URL is necessary and trusted",
                ))
        return issues

    def _check_secrets(self, source: str) -> List[SecurityIssue]:
        issues = []
        for detector in SECRET_DETECTORS:
            if detector.pattern.search(source):
                issues.append(self._issue(detector, None))

        if not issues:
            for match in islice(STRING_LITERAL.finditer(source), MAX_MATCHES_PER_PATTERN * 5):
                if shannon_entropy(match.group(1)) >= ENTROPY_THRESHOLD:
                    issues.append(SecurityIssue(
                        type=IssueType.SENSITIVE_DATA,
                        severity=IssueSeverity.HIGH,
                        description="High-entropy string literal - potential embedded secret",
                        suggestion="Use environment variables or secure configuration",
                    ))
                    break
        return issues

    def _check_loops(self, source: str) -> List[SecurityIssue]:
        return [self._issue(detector, None) for detector in LOOP_DETECTORS
                if detector.pattern.search(source)]

    def _guarded(self, issues: List[SecurityIssue], name: str, check, source: str) -> None:
        try:
            issues.extend(check(source))
        except Exception as e:
            logger.error(f"Code check '{name}' failed: {e}")
            issues.append(self._scanner_error(name, IssueSeverity.CRITICAL))

    @staticmethod
    def _issue(detector: Detector, matched: Optional[str]) -> SecurityIssue:
        return SecurityIssue(
            type=detector.issue_type,
            severity=detector.severity,
            description=detector.description,
            location=_preview(matched) if matched is not None else None,
            suggestion=detector.suggestion,
        )

    @staticmethod
    def _scanner_error(name: str, severity: IssueSeverity) -> SecurityIssue:
        return SecurityIssue(
            type=IssueType.SCANNER_ERROR,
            severity=severity,
            description=f"Security check '{name}' failed; input flagged as suspicious",
            suggestion="Review the input manually before use",
        )
