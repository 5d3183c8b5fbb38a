from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path

from loadgen.api.report import build_run_report
from loadgen.core.engine import LoadGenerator
from loadgen.core.models import LoadConfig, parse_duration
from loadgen.exceptions import ConfigurationError
from loadgen.logger import session_logger as logger


def _env(name: str, default: str | None = None) -> str | None:
    # Returned raw: argparse applies each option's ``type`` to string defaults.
    return os.environ.get(f"LOADGEN_{name}", default)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ACME server load generator")
    parser.add_argument(
        "--api-base",
        type=str,
        default=_env("API_BASE", "http://localhost:4000"),
        help="Base URL of the target ACME server (serves /directory and /acme/*)",
    )
    parser.add_argument(
        "--challenge-port",
        type=int,
        default=_env("CHALLENGE_PORT", "5002"),
        help="Port the HTTP-01 challenge responder listens on",
    )
    parser.add_argument(
        "--rate",
        type=float,
        default=_env("RATE", "1"),
        help="Dispatch cycles launched per second",
    )
    parser.add_argument(
        "--max-regs",
        type=int,
        default=_env("MAX_REGS", "0"),
        help="Maximum number of simulated accounts (0 = unbounded)",
    )
    parser.add_argument(
        "--key-size",
        type=int,
        default=_env("KEY_SIZE", "2048"),
        help="RSA key size for account and certificate keys",
    )
    parser.add_argument(
        "--domain-base",
        type=str,
        default=_env("DOMAIN_BASE", "com"),
        help="Domain suffix under which test domains are minted",
    )
    parser.add_argument(
        "--duration",
        type=str,
        default=_env("DURATION", "30s"),
        help="Run duration (e.g. 500ms, 30s, 5m, 1h)",
    )
    parser.add_argument(
        "--timeout-seconds",
        type=float,
        default=_env("TIMEOUT_SECONDS", "30"),
        help="Per-request HTTP timeout",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=_env("WORKERS"),
        help="Run cycles on a fixed pool of workers instead of one task per cycle",
    )
    parser.add_argument(
        "--drain-timeout",
        type=str,
        default=_env("DRAIN_TIMEOUT", "10s"),
        help="How long to wait for in-flight cycles after the run ends",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write the run report (config, totals, latency) as JSON to this path",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = LoadConfig(
            api_base=args.api_base.strip(),
            challenge_port=args.challenge_port,
            rate=args.rate,
            max_regs=args.max_regs,
            key_size=args.key_size,
            domain_base=args.domain_base.strip(),
            duration_seconds=parse_duration(args.duration),
            timeout_seconds=args.timeout_seconds,
            workers=args.workers,
            drain_timeout_seconds=parse_duration(args.drain_timeout),
        )
        generator = LoadGenerator(config, logger=logger)
        result = asyncio.run(generator.run())
    except ConfigurationError as exc:
        logger.error(
            "loadgen.configuration_error",
            event="loadgen.configuration_error",
            error=exc.message,
            details=exc.details,
            recovery="Fix the reported setting and rerun",
        )
        return 2

    generator.dump()

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        payload = build_run_report(config, result)
        output_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

        logger.info(
            "loadgen.report_written",
            event="loadgen.report_written",
            path=str(output_path),
        )

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
