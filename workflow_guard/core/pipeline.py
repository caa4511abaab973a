"""Validation pipeline combining all validators with a single healing pass."""

import time
from typing import Any, List, NamedTuple, Optional, Tuple

from ..models.graph import WorkflowGraph, BlockType
from ..models.security import IssueSeverity
from ..models.validation import (
    ValidationError,
    ValidationWarning,
    ValidationResult,
    ValidationKind,
    Severity,
    ErrorCode,
    WarningCode,
)
from .auto_healer import AutoHealer, is_healable
from .business_rules import BusinessRuleValidator
from .graph_analyzer import GraphAnalyzer
from .schema_validator import SchemaValidator
from .security_scanner import SecurityScanner
from .logging import get_logger

logger = get_logger(__name__)


class ValidationPipeline:
    """Runs schema, business, graph and security checks, then heals once."""

    def __init__(
        self,
        schema_validator: Optional[SchemaValidator] = None,
        business_rules: Optional[BusinessRuleValidator] = None,
        graph_analyzer: Optional[GraphAnalyzer] = None,
        scanner: Optional[SecurityScanner] = None,
        healer: Optional[AutoHealer] = None,
    ):
        self.schema_validator = schema_validator or SchemaValidator()
        self.business_rules = business_rules or BusinessRuleValidator()
        self.graph_analyzer = graph_analyzer or GraphAnalyzer()
        self.scanner = scanner or SecurityScanner()
        self.healer = healer or AutoHealer()

    def validate(self, graph: Any, auto_heal: bool = True, strict_mode: bool = False) -> ValidationResult:
        """
        Validate a candidate workflow graph.

        Args:
            graph: A WorkflowGraph or the raw, untrusted provider mapping
            auto_heal: Attempt one healing pass when healable findings exist
            strict_mode: Treat findings of severity warning as failures too

        Returns:
            ValidationResult with every finding and, if healing applied, the
            corrected graph
        """
        started = time.perf_counter()
        normalized = WorkflowGraph.from_untrusted(graph)

        errors: List[ValidationError] = []
        warnings: List[ValidationWarning] = []

        errors.extend(self.schema_validator.validate(graph))

        business_errors, business_warnings = self.business_rules.validate(normalized)
        errors.extend(business_errors)
        warnings.extend(business_warnings)

        graph_errors, graph_warnings = self.graph_analyzer.analyze(normalized)
        errors.extend(graph_errors)
        warnings.extend(graph_warnings)

        security_errors, security_warnings = self._check_custom_code(normalized)
        errors.extend(security_errors)
        warnings.extend(security_warnings)

        corrected = None
        if auto_heal and any(is_healable(error) for error in errors):
            corrected = self.healer.heal(normalized, errors)

        if strict_mode:
            is_valid = not errors
        else:
            is_valid = not any(error.severity == Severity.ERROR for error in errors)

        elapsed = (time.perf_counter() - started) * 1000
        logger.info(
            f"Validated workflow with {len(normalized.nodes)} nodes: valid={is_valid}, "
            f"{len(errors)} errors, {len(warnings)} warnings, healed={corrected is not None} "
            f"({elapsed:.1f}ms)"
        )

        return ValidationResult(
            is_valid=is_valid,
            errors=errors,
            warnings=warnings,
            corrected_graph=corrected,
        )

    def _check_custom_code(self, graph: WorkflowGraph) -> Tuple[List[ValidationError], List[ValidationWarning]]:
        errors: List[ValidationError] = []
        warnings: List[ValidationWarning] = []

        for node in graph.nodes:
            if node.block_kind != BlockType.CUSTOM:
                continue
            code = node.config.get("code")
            if not code:
                continue

            scan = self.scanner.analyze_code_security(code)
            critical = scan.issues_at_least(IssueSeverity.CRITICAL)
            other = [issue for issue in scan.issues if issue.severity != IssueSeverity.CRITICAL]

            if critical:
                errors.append(ValidationError(
                    kind=ValidationKind.SECURITY,
                    code=ErrorCode.UNSAFE_CODE_DETECTED,
                    message=f"Potentially unsafe code in custom block: "
                            f"{', '.join(issue.description for issue in critical)}",
                    node_id=node.id,
                    severity=Severity.ERROR,
                ))
            if other:
                warnings.append(ValidationWarning(
                    kind=ValidationKind.SECURITY,
                    code=WarningCode.CODE_SECURITY_ISSUE,
                    message=f"Security concerns in custom block: "
                            f"{', '.join(sorted({issue.description for issue in other}))}",
                    node_id=node.id,
                    suggestion="Review the generated code before enabling this block",
                ))

        return errors, warnings


class HealingOutcome(NamedTuple):
    """Result of the last validation pass and the graph it validated."""
    result: ValidationResult
    graph: WorkflowGraph
    passes: int


def heal_until_stable(
    pipeline: ValidationPipeline,
    graph: Any,
    max_iterations: int = 3,
    strict_mode: bool = False,
) -> HealingOutcome:
    """
    Re-validate healed graphs until no further repair applies.

    Each pass is one validate call with a single healing step; the loop stops
    when a pass yields no corrected graph or after ``max_iterations`` passes.
    A corrected graph produced by the final pass is left on the result
    unvalidated.
    """
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")

    current = graph
    result = None
    passes = 0
    while passes < max_iterations:
        passes += 1
        validated = current
        result = pipeline.validate(validated, auto_heal=True, strict_mode=strict_mode)
        if result.corrected_graph is None:
            break
        current = result.corrected_graph

    logger.debug(f"Healing loop finished after {passes} passes")
    return HealingOutcome(result=result, graph=WorkflowGraph.from_untrusted(validated), passes=passes)
