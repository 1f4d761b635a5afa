from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Mapping

import typer
from rich.console import Console
from rich.table import Table

from config import SETTINGS, GatewaySettings, load_settings
from gateway.errors import ConfigurationError
from gateway.factory import build_provider_tiers, get_available_engines
from gateway.job import TranslationJob
from gateway.models import JobEstimate, JobResult, TranslationRequest
from gateway.router import FallbackRouter
from utils.logging_config import configure_logging

app = typer.Typer(add_completion=False)
console = Console()


def _run_async(coro):
    return asyncio.run(coro)


def load_requests(path: Path, default_target: str | None = None) -> tuple[str, List[TranslationRequest]]:
    """Read a job manifest.

    ``entries`` is either a ``{key: text}`` object or a list of objects with
    ``key``, ``text`` and optionally ``source_lang`` / ``placeholders``.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read job manifest {path}: {exc}") from exc
    target = default_target or data.get("target_lang")
    if not target:
        raise ConfigurationError("Job manifest has no target_lang and none was given on the command line")
    source = data.get("source_lang", "en")
    entries = data.get("entries") or {}
    if isinstance(entries, Mapping):
        entries = [{"key": key, "text": text} for key, text in entries.items()]

    requests: List[TranslationRequest] = []
    for entry in entries:
        requests.append(
            TranslationRequest.create(
                str(entry["key"]),
                str(entry["text"]),
                source_lang=entry.get("source_lang", source),
                target_lang=target,
                placeholder_tokens=entry.get("placeholders"),
            )
        )
    return target, requests


def _settings(config: Path | None) -> GatewaySettings:
    return load_settings(config) if config is not None else SETTINGS


def _print_result(result: JobResult) -> None:
    table = Table(title="Translation outcomes")
    table.add_column("Key")
    table.add_column("Status")
    table.add_column("Provider")
    table.add_column("Attempts", justify="right")
    table.add_column("Text / reason")
    for outcome in result.outcomes:
        text = outcome.translated_text if outcome.accepted else (
            f"{outcome.failure_reason.value}: {outcome.detail or ''}" if outcome.failure_reason else ""
        )
        table.add_row(
            outcome.key,
            outcome.status.value,
            outcome.provider_used or "-",
            str(outcome.attempts),
            text or "",
        )
    console.print(table)
    for name, chars in sorted(result.provider_usage.items()):
        console.print(f"{name}: {chars} chars in {result.provider_calls.get(name, 0)} call(s)")
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    console.print(f"Coverage: {result.coverage_pct:.2f}%" + (" (cancelled)" if result.cancelled else ""))


def _print_estimate(estimate: JobEstimate) -> None:
    table = Table(title="Dry run")
    table.add_column("Provider")
    table.add_column("Chars", justify="right")
    table.add_column("Requests", justify="right")
    table.add_column("Cost", justify="right")
    for name, chars in estimate.estimated_chars.items():
        table.add_row(
            name,
            str(chars),
            str(estimate.estimated_requests.get(name, 0)),
            f"{estimate.estimated_cost.get(name, 0.0):.4f}",
        )
    console.print(table)
    console.print(f"{len(estimate.cached)} cached, {len(estimate.pending_keys)} pending")
    if estimate.unroutable_keys:
        console.print(f"[red]No provider for:[/red] {', '.join(estimate.unroutable_keys)}")


@app.command(help="Translate a JSON job manifest through the provider fallback chain")
def translate(
    job: Path = typer.Argument(..., exists=True, readable=True, help="JSON job manifest"),
    config: Path | None = typer.Option(None, "--config", "-c", exists=True, readable=True, help="JSON settings"),
    target: str | None = typer.Option(None, "--target", "-t", help="Override the manifest's target language"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the result as JSON"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report cache hits and the estimated cost"),
    log_file: Path | None = typer.Option(None, help="Also log to this file"),
    log_level: str = typer.Option("INFO", help="Log level"),
) -> None:
    configure_logging(log_file, level=log_level)
    try:
        settings = _settings(config)
        target_lang, requests = load_requests(job, target)
        tiers = build_provider_tiers(
            settings.providers,
            skip_on_missing_key=settings.skip_on_missing_key,
            proxy=settings.proxy_url,
        )
        router = FallbackRouter(tiers, settings.build_context())
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=2) from exc

    async def runner():
        translation_job = TranslationJob(router=router, target_lang=target_lang, requests=requests, dry_run=dry_run)
        try:
            return await translation_job.run()
        finally:
            for provider in tiers:
                await provider.adapter.close()

    try:
        result = _run_async(runner())
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=2) from exc

    if isinstance(result, JobEstimate):
        _print_estimate(result)
    else:
        _print_result(result)
    if output is not None:
        output.write_text(json.dumps(result.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        console.print(f"Saved result to {output}")
    if isinstance(result, JobResult) and result.failures:
        raise typer.Exit(code=1)


@app.command(help="Show the configured provider chain")
def providers(
    config: Path | None = typer.Option(None, "--config", "-c", exists=True, readable=True, help="JSON settings"),
) -> None:
    try:
        settings = _settings(config)
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=2) from exc
    table = Table(title="Providers")
    for column in ("Tier", "Name", "Engine", "Batch", "Chars", "Rate", "Enabled"):
        table.add_column(column)
    for provider in settings.providers:
        table.add_row(
            str(provider.tier),
            provider.name,
            provider.engine or provider.name,
            str(provider.max_batch_size),
            str(provider.max_chars_per_request),
            f"{provider.rate_limit.requests_per_sec}/s burst {provider.rate_limit.burst} {provider.billing_unit.value}",
            "yes" if provider.enabled else "no",
        )
    console.print(table)
    console.print(f"Engines: {', '.join(get_available_engines())}")


if __name__ == "__main__":
    app()
