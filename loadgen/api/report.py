from __future__ import annotations

from typing import Any

from loadgen.core.models import LoadConfig, RunResult


def build_run_report(config: LoadConfig, result: RunResult) -> dict[str, Any]:
    config_payload = {
        "api_base": config.api_base,
        "challenge_port": config.challenge_port,
        "rate": config.rate,
        "max_regs": config.max_regs,
        "key_size": config.key_size,
        "domain_base": config.domain_base,
        "duration_seconds": config.duration_seconds,
        "timeout_seconds": config.timeout_seconds,
        "workers": config.workers,
    }
    return {
        "config": config_payload,
        "result": {
            "cycles_launched": result.cycles_launched,
            "cycles_completed": result.cycles_completed,
            "cycles_failed": result.cycles_failed,
            "cycles_cancelled": result.cycles_cancelled,
            "registrations": result.registrations,
            "duration_seconds": result.duration_seconds,
            "launch_rate": result.launch_rate,
        },
        "latency": result.latency_report,
    }
