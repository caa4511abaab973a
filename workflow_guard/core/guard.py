"""Service tying generation, validation, versioning and auditing together."""

import time
from collections.abc import Mapping
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from ..config import AppConfig, get_config
from ..models.graph import WorkflowGraph
from ..models.security import IssueSeverity, PromptScanResult
from ..models.validation import ValidationResult
from ..models.version import WorkflowVersion, RollbackResult
from ..storage.base import VersionBackend, AuditBackend
from ..storage.memory import InMemoryAuditBackend
from .audit_log import AuditLog, AlertSink
from .exceptions import GenerationError, StorageError
from .logging import get_logger, logging_context
from .pipeline import ValidationPipeline, heal_until_stable
from .security_scanner import SecurityScanner
from .version_store import VersionStore

logger = get_logger(__name__)


class GenerationProvider(Protocol):
    """Produces an untrusted ``{nodes, edges}`` mapping from a description."""

    name: str

    def generate(self, description: str, options: Dict[str, Any]) -> Any:
        ...


class GenerationOutcome(BaseModel):
    """What a generation request produced after hardening."""
    model_config = ConfigDict(populate_by_name=True)

    graph: WorkflowGraph
    validation: ValidationResult
    prompt_scan: PromptScanResult = Field(..., alias="promptScan")
    version: Optional[WorkflowVersion] = None
    processing_time: float = Field(..., alias="processingTime", description="Milliseconds")
    heal_passes: int = Field(1, alias="healPasses")


class WorkflowGuard:
    """Hardens provider output before it is stored or run."""

    def __init__(
        self,
        provider: Optional[GenerationProvider] = None,
        pipeline: Optional[ValidationPipeline] = None,
        versions: Optional[VersionStore] = None,
        audit: Optional[AuditLog] = None,
        max_heal_iterations: int = 1,
    ):
        self.provider = provider
        self.pipeline = pipeline or ValidationPipeline()
        self.versions = versions or VersionStore()
        self.audit = audit or AuditLog()
        self.max_heal_iterations = max_heal_iterations

    @classmethod
    def from_config(
        cls,
        provider: Optional[GenerationProvider] = None,
        config: Optional[AppConfig] = None,
        version_backend: Optional[VersionBackend] = None,
        audit_backend: Optional[AuditBackend] = None,
        alert_sink: Optional[AlertSink] = None,
    ) -> "WorkflowGuard":
        """Build a guard whose components follow the application configuration."""
        config = config or get_config()
        scanner = SecurityScanner(
            allowed_domains=config.allowed_domains,
            max_prompt_length=config.max_prompt_length,
            max_code_length=config.max_code_length,
        )
        return cls(
            provider=provider,
            pipeline=ValidationPipeline(scanner=scanner),
            versions=VersionStore(
                backend=version_backend,
                max_versions=config.max_versions,
                archive_keep=config.archive_keep,
                rollback_warning_distance=config.rollback_warning_distance,
            ),
            audit=AuditLog(
                backend=audit_backend or InMemoryAuditBackend(config.audit_max_events),
                alert_sink=alert_sink,
                app_version=config.app_version,
            ),
            max_heal_iterations=config.max_heal_iterations,
        )

    def scan_prompt(self, description: str, user_id: Optional[str] = None,
                    session_id: Optional[str] = None, context: str = "workflow_generation",
                    ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> PromptScanResult:
        """Scan a prompt and audit a violation when it is not secure."""
        scan = self.pipeline.scanner.sanitize_prompt_input(description)
        if not scan.is_secure:
            worst = max(scan.issues, key=lambda issue: issue.severity.rank)
            self.audit.log_security_violation(
                user_id,
                violation_type=worst.type.value,
                severity=worst.severity.value,
                description="Insecure prompt detected: " + "; ".join(
                    issue.description for issue in scan.issues
                    if issue.severity.rank >= IssueSeverity.HIGH.rank
                ),
                input_text=description,
                context=context,
                session_id=session_id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        return scan

    def generate_workflow(
        self,
        description: str,
        user_id: str,
        session_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        create_version: bool = False,
        options: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> GenerationOutcome:
        """
        Generate a workflow from a description and harden the result.

        The prompt is sanitized before it reaches the provider. The corrected
        graph replaces the provider output when the last validation pass
        (run on the graph before healing) found it valid; the corrected graph
        itself is not revalidated unless more heal passes are configured.

        Raises:
            GenerationError: If no provider is configured or it returns no mapping
        """
        if self.provider is None:
            raise GenerationError("No generation provider configured")

        with logging_context(user_id=user_id, session_id=session_id, workflow_id=workflow_id):
            return self._generate(description, user_id, session_id, workflow_id, create_version,
                                  options, ip_address, user_agent)

    def _generate(self, description, user_id, session_id, workflow_id, create_version,
                  options, ip_address, user_agent) -> GenerationOutcome:
        started = time.perf_counter()
        options = dict(options or {})
        model = getattr(self.provider, "name", type(self.provider).__name__)

        scan = self.scan_prompt(description, user_id, session_id,
                                ip_address=ip_address, user_agent=user_agent)
        prompt = scan.sanitized_text or description

        try:
            raw = self.provider.generate(prompt, options)
            if not isinstance(raw, Mapping):
                raise GenerationError("Invalid workflow format generated by provider", provider=model)

            outcome = heal_until_stable(self.pipeline, raw, max_iterations=self.max_heal_iterations)
        except Exception as e:
            elapsed = (time.perf_counter() - started) * 1000
            logger.error(f"Workflow generation failed for user {user_id}: {e}")
            self.audit.log_workflow_generation(
                user_id, session_id, prompt, [], [], elapsed, model, "failure",
                errors=[str(e)], options=options, ip_address=ip_address, user_agent=user_agent,
            )
            raise

        result = outcome.result
        graph = outcome.graph
        if result.corrected_graph is not None and result.is_valid:
            graph = result.corrected_graph
            logger.info("Applied auto-healing corrections to workflow")

        version = None
        if workflow_id and create_version:
            try:
                version = self.versions.create_version(
                    workflow_id, graph.nodes, graph.edges, user_id,
                    name=f"Generated from: {prompt[:50]}",
                    generation_prompt=prompt,
                    generation_options=options,
                    validation_result=result,
                )
                self.audit.log_version_event(user_id, workflow_id, "create", version)
            except StorageError as e:
                logger.warning(f"Failed to create workflow version: {e}")

        elapsed = (time.perf_counter() - started) * 1000
        self.audit.log_workflow_generation(
            user_id, session_id, prompt, graph.nodes, graph.edges, elapsed, model,
            "success" if result.is_valid else "partial",
            errors=[error.message for error in result.errors],
            options=options,
            validation_result=result,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.audit.log_validation(user_id, "workflow", result, session_id=session_id, processing_time=elapsed)

        return GenerationOutcome(
            graph=graph,
            validation=result,
            prompt_scan=scan,
            version=version,
            processing_time=elapsed,
            heal_passes=outcome.passes,
        )

    def validate_workflow(
        self,
        graph: Any,
        user_id: Optional[str] = None,
        resource: str = "workflow",
        auto_heal: bool = True,
        strict_mode: bool = False,
        session_id: Optional[str] = None,
    ) -> ValidationResult:
        """Validate a graph and record the outcome."""
        started = time.perf_counter()
        result = self.pipeline.validate(graph, auto_heal=auto_heal, strict_mode=strict_mode)
        elapsed = (time.perf_counter() - started) * 1000
        self.audit.log_validation(user_id, resource, result, session_id=session_id, processing_time=elapsed)
        return result

    def snapshot(self, workflow_id: str, graph: Any, user_id: str, **metadata) -> WorkflowVersion:
        """Store an accepted graph as a version and audit it."""
        normalized = WorkflowGraph.from_untrusted(graph)
        version = self.versions.create_version(
            workflow_id, normalized.nodes, normalized.edges, user_id, **metadata
        )
        self.audit.log_version_event(user_id, workflow_id, "create", version)
        return version

    def rollback(self, workflow_id: str, target_version_id: str, user_id: str,
                 reason: Optional[str] = None, create_backup: bool = True) -> RollbackResult:
        """Roll a workflow back and audit the rollback and any backup."""
        result = self.versions.rollback(
            workflow_id, target_version_id, user_id, reason=reason, create_backup=create_backup
        )
        if result.backup is not None:
            self.audit.log_version_event(user_id, workflow_id, "backup", result.backup)
        self.audit.log_version_event(
            user_id, workflow_id, "rollback", result.rolled_back_to,
            details={"reason": reason, "warnings": result.warnings or []},
        )
        return result
