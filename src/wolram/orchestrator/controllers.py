"""Controllers for wolram CLI commands."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path

from wolram.config import Settings
from wolram.orchestrator.audit import AuditRecord, write_audit_record
from wolram.orchestrator.backend import (
    AnthropicClient,
    GenerationBackend,
    NetworkError,
    StubGenerationBackend,
)
from wolram.orchestrator.engine import JobEngine
from wolram.orchestrator.failure_classifier import reject_empty_output
from wolram.orchestrator.models import (
    CapabilityTier,
    Complete,
    Job,
    Next,
    Retry,
    RetryLimits,
    Transition,
)
from wolram.orchestrator.recording import GitRecorder, RecordingError
from wolram.orchestrator.routing import DEFAULT_ROUTING_TABLE, RoutingTable
from wolram.orchestrator.todo import generate_todos

logger = logging.getLogger(__name__)

DEMO_DESCRIPTION = "Add unit tests for the retry policy"
MAX_RESULT_PREVIEW_CHARS = 2_000


@dataclass(slots=True)
class RunJobCommand:
    """CLI input for a single job run."""

    description: str | None
    file: Path | None = None
    model: str | None = None
    max_retries: int | None = None
    audit_dir: Path | None = None
    no_git: bool = False
    no_llm_routing: bool = False
    config_path: Path | None = None


@dataclass(slots=True)
class StatusCommand:
    """CLI input for configuration/environment status."""

    config_path: Path | None = None


@dataclass(slots=True)
class TodoCommand:
    """CLI input for TODO decomposition."""

    prompt: str
    config_path: Path | None = None
    output_format: str = "text"


@dataclass(slots=True)
class DemoCommand:
    """CLI input for the offline lifecycle demo."""

    description: str = DEMO_DESCRIPTION
    transient_failures: int = 1


@dataclass(slots=True)
class JobInput:
    """Job fields accepted from the command line or a job file."""

    description: str
    max_retries: int | None = None
    base_delay_ms: int | None = None


@dataclass(slots=True)
class RunJobResult:
    lines: list[str]
    record: AuditRecord
    audit_path: Path | None = None

    @property
    def succeeded(self) -> bool:
        return self.record.succeeded


class WolramCliController:
    """Adapter layer between rich-click commands and the job engine."""

    def run_job(self, command: RunJobCommand) -> RunJobResult:
        settings = Settings.load(command.config_path).with_overrides(
            max_retries=command.max_retries,
            audit_dir=command.audit_dir,
        )
        job_input = _resolve_job_input(command)
        job = Job(
            description=job_input.description,
            retry_limits=RetryLimits(
                max_retries=_first_set(
                    command.max_retries,
                    job_input.max_retries,
                    settings.max_retries,
                ),
                base_delay_ms=_first_set(job_input.base_delay_ms, settings.base_delay_ms),
            ),
        )
        recorder = None if command.no_git else _git_recorder(settings)
        llm_routing = settings.llm_routing and settings.has_api_key and not command.no_llm_routing

        with _generation_backend(settings) as backend:
            engine = JobEngine(
                backend=backend,
                recorder=recorder,
                llm_routing=llm_routing,
                tier_override=_parse_tier(command.model),
                routing_table=_routing_table(settings),
                max_delay_ms=settings.max_delay_ms,
                honor_rate_limit_hint=settings.honor_rate_limit_hint,
                max_tokens=settings.max_tokens,
                output_check=reject_empty_output,
            )
            record = engine.run(job)

        lines = [] if settings.has_api_key else ["Stub mode: no API key configured."]
        lines.extend(render_record_lines(record))
        audit_path: Path | None = None
        if settings.audit_dir is not None:
            audit_path = write_audit_record(record, settings.audit_dir)
            lines.append(f"Audit record: {audit_path}")
        return RunJobResult(lines=lines, record=record, audit_path=audit_path)

    def status(self, command: StatusCommand) -> list[str]:
        """Show effective configuration and recording environment."""

        settings = Settings.load(command.config_path)
        lines = [
            f"Config file: {settings.config_path or '(none)'}",
            "API key: " + ("configured" if settings.has_api_key else "missing (stub mode)"),
            f"API URL: {settings.api_url}",
            f"Default tier: {settings.default_model_tier.value} "
            f"({settings.default_model_tier.api_model})",
            f"Retries: max={settings.max_retries} base_delay_ms={settings.base_delay_ms} "
            f"max_delay_ms={settings.max_delay_ms} "
            f"honor_rate_limit_hint={settings.honor_rate_limit_hint}",
            f"LLM routing: {'on' if settings.llm_routing else 'off'}",
            f"Audit dir: {settings.audit_dir or '(not persisted)'}",
        ]
        if not settings.git_recording:
            lines.append("Git recording: off")
            return lines
        try:
            recorder = GitRecorder.open(Path.cwd())
            branch = recorder.current_branch()
        except RecordingError as error:
            lines.append(f"Git recording: unavailable ({error})")
        else:
            lines.append(f"Git recording: {recorder.root} on branch {branch}")
        return lines

    def todo(self, command: TodoCommand) -> list[str]:
        settings = Settings.load(command.config_path)
        if settings.has_api_key:
            with _generation_backend(settings) as backend:
                items = generate_todos(command.prompt, backend)
        else:
            items = generate_todos(command.prompt)

        if command.output_format == "json":
            return [json.dumps([item.to_dict() for item in items], ensure_ascii=False, indent=2)]
        return [
            f"{item.id}. [{item.priority.value}] {item.title}"
            + (f" ({item.skill})" if item.skill else "")
            for item in items
        ]

    def demo(self, command: DemoCommand) -> list[str]:
        """Walk a sample job through the lifecycle with the stub backend."""

        lines = [f"Demo job: {command.description}"]

        def _observe(job: Job, transition: Transition) -> None:
            lines.append(f"  {job.stage_history[-1]} -> {describe_transition(transition)}")

        backend = StubGenerationBackend(
            [NetworkError("simulated network failure")] * max(command.transient_failures, 0),
        )
        engine = JobEngine(
            backend=backend,
            recorder=None,
            max_delay_ms=0,
            output_check=reject_empty_output,
            on_transition=_observe,
        )
        job = Job(
            description=command.description,
            retry_limits=RetryLimits(max_retries=3, base_delay_ms=0),
        )
        record = engine.run(job)
        lines.append("Audit record:")
        lines.append(record.to_json())
        return lines


def describe_transition(transition: Transition) -> str:
    if isinstance(transition, Next):
        return f"Next({transition.stage})"
    if isinstance(transition, Retry):
        return f"Retry({transition.stage}, {transition.reason})"
    if isinstance(transition, Complete):
        return f"Complete({transition.outcome})"
    raise TypeError(f"Unknown transition: {transition!r}")


def render_record_lines(record: AuditRecord) -> list[str]:
    lines = [
        f"Job {record.job_id}: {record.status.value}",
        "Stages: " + " -> ".join(stage.value for stage in record.stage_history),
        f"Retries: {record.retry_count}/{record.max_retries}",
    ]
    if record.skill is not None and record.capability_tier is not None:
        lines.append(
            f"Routing: skill={record.skill} tier={record.capability_tier.value} "
            f"model={record.model} source={record.routing_source}",
        )
    lines.append(
        f"Usage: input_tokens={record.input_tokens} output_tokens={record.output_tokens} "
        f"cost_usd={record.estimated_cost_usd:.6f}",
    )
    if record.commit_ref:
        lines.append(f"Commit: {record.commit_ref}")
    if record.recording_error:
        lines.append(f"Recording error: {record.recording_error}")
    if record.failure_kind is not None:
        lines.append(f"Failure ({record.failure_kind.value}): {record.failure_message}")
    if record.result_text:
        preview = record.result_text
        if len(preview) > MAX_RESULT_PREVIEW_CHARS:
            preview = preview[:MAX_RESULT_PREVIEW_CHARS] + "..."
        lines.append("Result:")
        lines.append(preview)
    return lines


def load_job_file(path: Path) -> JobInput:
    """Read a job file: a JSON object, or plain text used as the description.

    Only the description and retry limits are taken from JSON; lifecycle
    fields such as stage, history or status are ignored.
    """

    try:
        text = path.read_text("utf-8")
    except OSError as error:
        raise ValueError(f"Cannot read job file {path}: {error}") from error

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        description = text.strip()
        if not description:
            raise ValueError(f"Job file {path} is empty.") from None
        return JobInput(description=description)

    if not isinstance(payload, dict):
        raise ValueError(f"Job file {path} must contain a JSON object.")
    description = payload.get("description")
    if not isinstance(description, str) or not description.strip():
        raise ValueError(f"Job file {path} has no description.")
    return JobInput(
        description=description.strip(),
        max_retries=_optional_int(payload, "max_retries", path),
        base_delay_ms=_optional_int(payload, "base_delay_ms", path),
    )


def _resolve_job_input(command: RunJobCommand) -> JobInput:
    if command.file is not None:
        return load_job_file(command.file)
    if command.description is None or not command.description.strip():
        raise ValueError("Provide a job description or --file.")
    return JobInput(description=command.description.strip())


def _optional_int(payload: dict[str, object], key: str, path: Path) -> int | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Job file {path}: {key} must be an integer, got {value!r}.")
    return value


def _first_set(*values: int | None) -> int:
    for value in values:
        if value is not None:
            return value
    raise ValueError("No value provided.")


def _parse_tier(value: str | None) -> CapabilityTier | None:
    if value is None:
        return None
    return CapabilityTier.parse(value)


def _routing_table(settings: Settings) -> RoutingTable:
    if settings.default_model_tier == DEFAULT_ROUTING_TABLE.default_tier:
        return DEFAULT_ROUTING_TABLE
    return replace(DEFAULT_ROUTING_TABLE, default_tier=settings.default_model_tier)


def _git_recorder(settings: Settings) -> GitRecorder | None:
    if not settings.git_recording:
        return None
    try:
        return GitRecorder.open(Path.cwd())
    except RecordingError as error:
        logger.warning("Git recording disabled: %s", error)
        return None


@contextmanager
def _generation_backend(settings: Settings) -> Iterator[GenerationBackend]:
    if not settings.has_api_key:
        yield StubGenerationBackend()
        return
    client = AnthropicClient(
        api_key=settings.api_key or "",
        base_url=settings.api_url,
        timeout_seconds=settings.request_timeout_seconds,
        connect_timeout_seconds=settings.connect_timeout_seconds,
    )
    try:
        yield client
    finally:
        client.close()
