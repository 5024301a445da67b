"""
driversign_compliance.cli

Command-line entrypoint (`dsc`).

Responsibilities:
- `evaluate`: inspect artifacts, evaluate them against the policy, dispatch actions
  and print the JSON compliance report.
- `redispatch`: replay failed on_noncompliant actions from cached verdicts.
- `serve`: run the HTTP API.

Exit codes: 0 all compliant, 1 any non-compliant, 2 policy/usage error.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence

import httpx

from driversign_compliance import __version__
from driversign_compliance.db.session import create_sessionmaker, engine_scope
from driversign_compliance.errors import PolicyLoadError
from driversign_compliance.observability.logging import configure_logging, get_logger
from driversign_compliance.policy.store import PolicyStore
from driversign_compliance.reporting.report import ComplianceReport
from driversign_compliance.services.compliance_service import (
    ComplianceService,
    build_compliance_service,
)
from driversign_compliance.settings import Settings, get_settings

log = get_logger(__name__)

EXIT_OK = 0
EXIT_NONCOMPLIANT = 1
EXIT_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dsc", description="Driver signing compliance")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default=None, help="Override DSC_LOG_LEVEL")
    parser.add_argument("--database-url", default=None, help="Override DSC_DATABASE_URL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate driver artifacts")
    evaluate_parser.add_argument("paths", nargs="+", help="Artifact files to evaluate")
    evaluate_parser.add_argument(
        "--policy", default=None, help="Policy YAML (default: DSC_POLICY_PATH)"
    )
    evaluate_parser.add_argument(
        "--report", default=None, help="Write the JSON report here instead of stdout"
    )
    evaluate_parser.add_argument(
        "--no-dispatch",
        action="store_true",
        help="Evaluate only; do not run on_noncompliant actions",
    )
    evaluate_parser.add_argument(
        "--quarantine-dir", default=None, help="Override DSC_QUARANTINE_DIR"
    )

    redispatch_parser = subparsers.add_parser(
        "redispatch", help="Replay failed actions from cached verdicts"
    )
    redispatch_parser.add_argument("--quarantine-dir", default=None)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    return parser


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    update: dict[str, object] = {}
    for flag, field in (
        ("log_level", "log_level"),
        ("database_url", "database_url"),
        ("policy", "policy_path"),
        ("quarantine_dir", "quarantine_dir"),
        ("host", "api_host"),
        ("port", "api_port"),
    ):
        value = getattr(args, flag, None)
        if value is not None:
            update[field] = value
    return settings.model_copy(update=update) if update else settings


def _emit(report: ComplianceReport, target: str | None) -> None:
    if target:
        report.write(target)
        log.info("report_written", path=target)
    else:
        sys.stdout.write(report.model_dump_json(indent=2) + "\n")


async def _evaluate(settings: Settings, args: argparse.Namespace) -> int:
    try:
        store = PolicyStore.from_file(settings.policy_path)
    except PolicyLoadError as e:
        log.error("policy_load_failed", path=settings.policy_path, error=str(e))
        print(f"dsc: {e}", file=sys.stderr)
        return EXIT_ERROR

    async with engine_scope(settings) as engine:
        session_factory = create_sessionmaker(engine)
        if args.no_dispatch:
            svc = ComplianceService(
                session_factory=session_factory, policy_store=store, actor="cli"
            )
            report = await svc.evaluate_paths(args.paths, dispatch=False)
        else:
            async with httpx.AsyncClient(
                base_url=settings.internal_api_base_url, timeout=10.0
            ) as http:
                svc = build_compliance_service(
                    settings=settings,
                    session_factory=session_factory,
                    policy_store=store,
                    http=http,
                    actor="cli",
                )
                report = await svc.evaluate_paths(args.paths, dispatch=True)

    _emit(report, args.report)
    return EXIT_OK if report.all_compliant else EXIT_NONCOMPLIANT


async def _redispatch(settings: Settings) -> int:
    async with engine_scope(settings) as engine:
        async with httpx.AsyncClient(
            base_url=settings.internal_api_base_url, timeout=10.0
        ) as http:
            svc = build_compliance_service(
                settings=settings,
                session_factory=create_sessionmaker(engine),
                policy_store=PolicyStore(),
                http=http,
                actor="cli",
            )
            effects = await svc.redispatch_failed()

    sys.stdout.write(json.dumps([e.as_dict() for e in effects], indent=2) + "\n")
    return EXIT_NONCOMPLIANT if any(e.status == "failed" for e in effects) else EXIT_OK


def main(argv: Sequence[str] | None = None, *, settings: Settings | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = _apply_overrides(settings or get_settings(), args)

    if args.command == "serve":
        # Imported lazily: uvicorn is only needed for this subcommand.
        from driversign_compliance.api.__main__ import serve

        serve(settings)
        return EXIT_OK

    # stdout carries the report; logs go to stderr.
    configure_logging(
        service_name=settings.service_name, level=settings.log_level, stream=sys.stderr
    )
    if args.command == "evaluate":
        return asyncio.run(_evaluate(settings, args))
    if args.command == "redispatch":
        return asyncio.run(_redispatch(settings))
    return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
