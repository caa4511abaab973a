"""Command line interface for validating and scanning generated workflows."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import (
    AppConfig,
    LogLevel,
    load_config,
    get_development_config,
    get_testing_config,
    validate_config,
)
from .core.exceptions import StorageError, WorkflowGuardError
from .core.logging import setup_logging, get_logger, log_with_context
from .core.pipeline import ValidationPipeline
from .core.security_scanner import SecurityScanner

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_ERROR = 2


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="workflow-guard",
        description="Workflow Guard - validate, heal and scan AI-generated workflow graphs"
    )

    parser.add_argument(
        "--env",
        choices=["development", "testing"],
        help="Environment configuration preset"
    )

    parser.add_argument(
        "--config",
        help="Path to a .env configuration file"
    )

    parser.add_argument(
        "--database-url",
        help="Database connection URL"
    )

    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        help="Logging level"
    )

    parser.add_argument(
        "--log-file",
        help="Path to log file"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    validate_parser = subparsers.add_parser("validate", help="Validate a workflow graph JSON file")
    validate_parser.add_argument("graph", help="Path to a JSON file with nodes and edges, or - for stdin")
    validate_parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail on findings of any severity"
    )
    validate_parser.add_argument(
        "--no-heal",
        action="store_true",
        help="Skip the auto-healing pass"
    )

    prompt_parser = subparsers.add_parser("scan-prompt", help="Scan a prompt for injection attempts")
    prompt_parser.add_argument("text", help="Prompt text, or - to read it from stdin")

    code_parser = subparsers.add_parser("scan-code", help="Scan a generated code file")
    code_parser.add_argument("file", help="Path to the code file, or - for stdin")

    subparsers.add_parser("init-db", help="Create the persistence tables")

    subparsers.add_parser("show-config", help="Show current configuration")

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration based on command line arguments."""
    if args.env == "development":
        config = get_development_config()
    elif args.env == "testing":
        config = get_testing_config()
    else:
        config = load_config(args.config)

    # Command line arguments win over the environment
    if args.database_url:
        config.database_url = args.database_url
    if args.log_level:
        config.log_level = LogLevel(args.log_level)
    if args.log_file:
        config.log_file = args.log_file

    return config


def _read_source(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, "r", encoding="utf-8") as handle:
        return handle.read()


def _scanner(config: AppConfig) -> SecurityScanner:
    return SecurityScanner(
        allowed_domains=config.allowed_domains,
        max_prompt_length=config.max_prompt_length,
        max_code_length=config.max_code_length,
    )


def run_validate(args: argparse.Namespace, config: AppConfig) -> int:
    """Validate a graph file and print the result as JSON."""
    graph = json.loads(_read_source(args.graph))
    pipeline = ValidationPipeline(scanner=_scanner(config))
    result = pipeline.validate(graph, auto_heal=not args.no_heal, strict_mode=args.strict)
    print(result.model_dump_json(by_alias=True, exclude_none=True, indent=2))
    return EXIT_OK if result.is_valid else EXIT_FINDINGS


def run_scan_prompt(args: argparse.Namespace, config: AppConfig) -> int:
    """Scan prompt text and print the result as JSON."""
    result = _scanner(config).sanitize_prompt_input(_read_source(args.text) if args.text == "-" else args.text)
    print(result.model_dump_json(by_alias=True, exclude_none=True, indent=2))
    return EXIT_OK if result.is_secure else EXIT_FINDINGS


def run_scan_code(args: argparse.Namespace, config: AppConfig) -> int:
    """Scan a code file and print the result as JSON."""
    result = _scanner(config).analyze_code_security(_read_source(args.file))
    print(result.model_dump_json(by_alias=True, exclude_none=True, indent=2))
    return EXIT_OK if result.is_safe else EXIT_FINDINGS


def run_init_db(config: AppConfig) -> int:
    """Create the version and audit tables."""
    from sqlalchemy.exc import SQLAlchemyError
    from .storage.database import create_database_engine, create_tables

    logger = get_logger(__name__)
    logger.info("Initializing database tables...")
    engine = create_database_engine(config.database_url, echo=config.database_echo)
    try:
        create_tables(engine)
    except SQLAlchemyError as e:
        raise StorageError(f"Failed to create tables: {e}", operation="create tables", transient=False) from e
    finally:
        engine.dispose()
    logger.info("Database tables created successfully")
    print(f"Initialized database: {config.database_url}")
    return EXIT_OK


def show_configuration(config: AppConfig) -> int:
    """Show current configuration."""
    print("Current Configuration:")
    print(f"  App Name: {config.app_name}")
    print(f"  Version: {config.app_version}")
    print(f"  Database URL: {config.database_url}")
    print(f"  Log Level: {config.log_level.value}")
    print(f"  Allowed Domains: {', '.join(config.allowed_domains)}")
    print(f"  Max Versions: {config.max_versions} (keep {config.archive_keep} unarchived)")
    print(f"  Audit Capacity: {config.audit_max_events}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit code."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_ERROR

    try:
        config = load_configuration(args)
        validate_config(config)

        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count,
        )

        if args.command == "validate":
            return run_validate(args, config)
        elif args.command == "scan-prompt":
            return run_scan_prompt(args, config)
        elif args.command == "scan-code":
            return run_scan_code(args, config)
        elif args.command == "init-db":
            return run_init_db(config)
        elif args.command == "show-config":
            return show_configuration(config)

    except WorkflowGuardError as e:
        log_with_context(get_logger(__name__), logging.DEBUG, "Command failed", error=e.to_dict())
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_ERROR
    except (OSError, ValueError) as e:
        # json.JSONDecodeError and pydantic's ValidationError are ValueErrors
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    parser.print_help()
    return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
