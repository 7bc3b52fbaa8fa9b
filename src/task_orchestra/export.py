"""Export orchestration results as JSON, YAML or Markdown."""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from task_orchestra.protocol.types import OrchestrationResult, TaskStatus


class ExportFormat(str, Enum):
    """Supported export formats."""

    JSON = "json"
    YAML = "yaml"
    MARKDOWN = "markdown"


_SUFFIXES = {
    ExportFormat.JSON: ".json",
    ExportFormat.YAML: ".yaml",
    ExportFormat.MARKDOWN: ".md",
}


def _as_data(result: OrchestrationResult) -> dict[str, Any]:
    return result.model_dump(mode="json")


def to_json(result: OrchestrationResult, indent: int = 2) -> str:
    return json.dumps(_as_data(result), indent=indent)


def to_yaml(result: OrchestrationResult) -> str:
    return yaml.safe_dump(_as_data(result), sort_keys=False, allow_unicode=True)


def to_markdown(result: OrchestrationResult) -> str:
    """Human-readable report: summary, consensus, then every response."""

    status = "SUCCESS" if result.success else "FAILED"
    perf = result.performance
    lines = [
        f"# Task {result.task_id}",
        "",
        f"- **Status:** {status}",
        f"- **Strategy:** {result.strategy_used}",
        f"- **Providers:** {', '.join(perf.providers_used) or '-'}",
        f"- **Duration:** {perf.total_duration_ms} ms",
        f"- **Tokens:** {perf.tokens_used}",
        f"- **Cost:** ${perf.total_cost:.4f}",
    ]
    if result.metadata.hierarchical_mode:
        lines.append(f"- **Hierarchical mode:** {result.metadata.hierarchical_mode}")
    if result.metadata.skipped_providers:
        lines.append(f"- **Skipped:** {', '.join(result.metadata.skipped_providers)}")

    if result.consensus is not None:
        consensus = result.consensus
        lines += [
            "",
            "## Consensus",
            "",
            f"- **Mode:** {consensus.mode.value}",
            f"- **Confidence:** {consensus.confidence:.2f}",
            f"- **Participants:** {consensus.participant_count}",
        ]
        if consensus.dissenting_providers:
            lines.append(f"- **Dissenting:** {', '.join(consensus.dissenting_providers)}")
        lines += ["", consensus.decision.content or "_(no content)_"]

    if result.validation is not None:
        validation = result.validation
        lines += [
            "",
            "## Validation",
            "",
            f"- **Agreement:** {validation.cross_provider_agreement:.2f}",
            f"- **Quality:** {validation.quality_score:.2f}",
        ]
        lines += [f"- {issue}" for issue in validation.issues]

    lines += ["", "## Results"]
    for response in result.results:
        marker = "ok" if response.status == TaskStatus.SUCCESS else response.status.value
        lines += [
            "",
            f"### {response.provider.name} ({marker})",
            "",
            f"_Request `{response.id}`, model {response.performance.model_used}, "
            f"confidence {response.result.confidence:.2f}_",
            "",
        ]
        if response.result.content:
            lines.append(response.result.content)
        elif response.result.reasoning:
            lines.append(f"> {response.result.reasoning}")

    return "\n".join(lines) + "\n"


def export_result(result: OrchestrationResult, fmt: ExportFormat | str) -> str:
    """Render *result* in *fmt*."""

    export_format = ExportFormat(fmt)
    if export_format == ExportFormat.JSON:
        return to_json(result)
    if export_format == ExportFormat.YAML:
        return to_yaml(result)
    return to_markdown(result)


def write_export(
    result: OrchestrationResult, fmt: ExportFormat | str, directory: Path | str = "."
) -> Path:
    """Write *result* to ``<directory>/<task_id><suffix>`` and return the path."""

    export_format = ExportFormat(fmt)
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / f"{result.task_id}{_SUFFIXES[export_format]}"
    path.write_text(export_result(result, export_format))
    return path


__all__ = [
    "ExportFormat",
    "export_result",
    "to_json",
    "to_markdown",
    "to_yaml",
    "write_export",
]
