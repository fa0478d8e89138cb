"""Read workflow files (XML ``pml-workflow`` documents or YAML) into ``WorkflowData``."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from ..errors import WorkflowParseError
from ..models import WorkflowShape
from .models import ParallelWorkflowData, PromptInfo, SequenceInfo, WorkflowData

logger = logging.getLogger(__name__)

ROOT_ELEMENT = "pml-workflow"

_PROMPT_TYPES = {
    "xml": "pml",
    "md": "markdown",
    "txt": "text",
}

_TIMEOUT_UNITS = {
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
}


def infer_prompt_type(src_file: str) -> str:
    """Return the prompt type implied by ``src_file``'s extension."""
    if not src_file or not src_file.strip():
        raise WorkflowParseError("Source file cannot be empty")
    suffix = Path(src_file).suffix
    if not suffix or suffix == ".":
        raise WorkflowParseError(
            f"Invalid file extension: file '{src_file}' must have a valid extension (.xml, .md, or .txt)"
        )
    extension = suffix[1:].lower()
    if extension not in _PROMPT_TYPES:
        raise WorkflowParseError(
            f"Unsupported file extension: '{extension}' in file '{src_file}'. "
            "Supported extensions are: .xml, .md, .txt"
        )
    return _PROMPT_TYPES[extension]


def parse_timeout(value: Any) -> Optional[int]:
    """Convert a timeout such as ``"5m"`` or ``"1h"`` to milliseconds.

    Returns ``None`` for a missing or blank value.
    """
    if value is None or not str(value).strip():
        return None
    text = str(value).strip()
    if len(text) < 2:
        raise WorkflowParseError(
            f"Invalid timeout format: '{value}'. Expected format: number + unit (m or h)"
        )
    number, unit = text[:-1], text[-1].lower()
    try:
        amount = int(number)
    except ValueError:
        raise WorkflowParseError(
            f"Invalid timeout format: '{value}'. Number part '{number}' is not a valid number"
        ) from None
    if amount <= 0:
        raise WorkflowParseError(
            f"Invalid timeout format: '{value}'. Number must be greater than 0"
        )
    if unit not in _TIMEOUT_UNITS:
        raise WorkflowParseError(
            f"Invalid timeout format: '{value}'. Unit must be 'm' (minutes) or 'h' (hours), "
            f"got: '{text[-1]}'"
        )
    return amount * _TIMEOUT_UNITS[unit]


def _fallback(
    fallback_src: Optional[str], timeout_millis: Optional[int], where: str
) -> Optional[PromptInfo]:
    if fallback_src is None or not str(fallback_src).strip():
        return None
    if timeout_millis is None:
        raise WorkflowParseError(
            f"{where} fallback-src is specified but timeout is not. "
            "fallback-src requires timeout to be set."
        )
    return _prompt(fallback_src, None, f"{where} fallback")


def _prompt(src: Optional[str], bind_result_exp: Optional[str], where: str) -> PromptInfo:
    if not src or not str(src).strip():
        raise WorkflowParseError(f"{where} missing required 'src' attribute")
    src = str(src).strip()
    return PromptInfo(
        src_file=src,
        type=infer_prompt_type(src),
        bind_result_exp=bind_result_exp or None,
    )


def _sequence(
    model: Optional[str],
    repository: Optional[str],
    prompts: Iterable[tuple[Optional[str], Optional[str]]],
    timeout: Any = None,
    fallback_src: Optional[str] = None,
    where: str = "Sequence",
) -> SequenceInfo:
    infos = [
        _prompt(src, bind, f"Prompt at index {i}") for i, (src, bind) in enumerate(prompts)
    ]
    timeout_millis = parse_timeout(timeout)
    return SequenceInfo(
        model=model or None,
        repository=repository or None,
        prompts=infos,
        timeout_millis=timeout_millis,
        fallback=_fallback(fallback_src, timeout_millis, where),
    )


def _from_sequence(sequence: SequenceInfo) -> WorkflowData:
    if not sequence.prompts:
        raise WorkflowParseError("No 'prompt' elements found in sequence")
    return WorkflowData(
        launch_prompt=sequence.prompts[0],
        model=sequence.model,
        repository=sequence.repository,
        update_prompts=sequence.prompts[1:],
        timeout_millis=sequence.timeout_millis,
        fallback=sequence.fallback,
    )


def _from_parallel(
    src: Optional[str],
    bind_result_type: Optional[str],
    sequences: list[SequenceInfo],
    timeout: Any = None,
    fallback_src: Optional[str] = None,
) -> WorkflowData:
    parallel_prompt = _prompt(src, None, "Parallel element")
    if not sequences:
        raise WorkflowParseError("Parallel element must contain at least one sequence element")
    for i, sequence in enumerate(sequences):
        if not sequence.prompts:
            raise WorkflowParseError(f"Sequence {i} inside parallel has no prompts")
    timeout_millis = parse_timeout(timeout)
    first = sequences[0]
    parallel = ParallelWorkflowData(
        parallel_prompt=parallel_prompt,
        bind_result_type=bind_result_type or None,
        sequences=sequences,
    )
    return WorkflowData(
        launch_prompt=parallel_prompt,
        model=first.model,
        repository=first.repository,
        parallel=parallel,
        timeout_millis=timeout_millis,
        fallback=_fallback(fallback_src, timeout_millis, "Parallel"),
    )


# ----------------------------------------------------------------------
# XML
def _xml_prompts(element: ET.Element) -> list[tuple[Optional[str], Optional[str]]]:
    return [(p.get("src"), p.get("bindResultExp")) for p in element.iter("prompt")]


def _xml_sequence(element: ET.Element, where: str) -> SequenceInfo:
    return _sequence(
        element.get("model"),
        element.get("repository"),
        _xml_prompts(element),
        element.get("timeout"),
        element.get("fallback-src"),
        where,
    )


def parse_xml_workflow(text: str) -> WorkflowData:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as exc:
        raise WorkflowParseError(f"Error parsing XML: {exc}") from exc

    if root.tag != ROOT_ELEMENT:
        raise WorkflowParseError(f"Root element must be '{ROOT_ELEMENT}'")

    parallel = root.find(".//parallel")
    if parallel is not None:
        sequences = [
            _xml_sequence(s, f"Sequence {i}") for i, s in enumerate(parallel.iter("sequence"))
        ]
        return _from_parallel(
            parallel.get("src"),
            parallel.get("bindResultType"),
            sequences,
            parallel.get("timeout"),
            parallel.get("fallback-src"),
        )

    sequence = root.find(".//sequence")
    if sequence is None:
        raise WorkflowParseError("No 'sequence' or 'parallel' element found in workflow.")
    return _from_sequence(_xml_sequence(sequence, "Sequence"))


# ----------------------------------------------------------------------
# YAML
def _yaml_prompts(raw: Any, where: str) -> list[tuple[Optional[str], Optional[str]]]:
    if not isinstance(raw, list):
        raise WorkflowParseError(f"{where}: 'prompts' must be a list")
    prompts = []
    for item in raw:
        if isinstance(item, str):
            prompts.append((item, None))
        elif isinstance(item, dict):
            prompts.append((item.get("src"), item.get("bindResultExp")))
        else:
            raise WorkflowParseError(f"{where}: invalid prompt entry {item!r}")
    return prompts


def _yaml_sequence(raw: Any, where: str) -> SequenceInfo:
    if not isinstance(raw, dict):
        raise WorkflowParseError(f"{where} must be a mapping")
    return _sequence(
        raw.get("model"),
        raw.get("repository"),
        _yaml_prompts(raw.get("prompts", []), where),
        raw.get("timeout"),
        raw.get("fallback-src"),
        where,
    )


def parse_yaml_workflow(text: str) -> WorkflowData:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise WorkflowParseError(f"Error parsing YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise WorkflowParseError("Workflow document must be a mapping")

    if "parallel" in data:
        raw = data["parallel"] or {}
        if not isinstance(raw, dict):
            raise WorkflowParseError("'parallel' must be a mapping")
        sequences = [
            _yaml_sequence(s, f"Sequence {i}") for i, s in enumerate(raw.get("sequences") or [])
        ]
        return _from_parallel(
            raw.get("src"),
            raw.get("bindResultType"),
            sequences,
            raw.get("timeout"),
            raw.get("fallback-src"),
        )

    if "sequence" in data:
        return _from_sequence(_yaml_sequence(data["sequence"], "Sequence"))

    raise WorkflowParseError("No 'sequence' or 'parallel' element found in workflow.")


def load_workflow(path: str | Path) -> WorkflowData:
    """Parse the workflow file at ``path``.

    Raises:
        WorkflowParseError: If the file is missing, unreadable or malformed.
    """
    workflow_path = Path(path)
    if not workflow_path.is_file():
        raise WorkflowParseError(f"Workflow file does not exist: {workflow_path}")
    try:
        text = workflow_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise WorkflowParseError(f"Error reading file: {exc}") from exc

    suffix = workflow_path.suffix.lower()
    if suffix == ".xml":
        workflow = parse_xml_workflow(text)
    elif suffix in (".yaml", ".yml"):
        workflow = parse_yaml_workflow(text)
    else:
        raise WorkflowParseError(f"Unsupported workflow format: {workflow_path.name}")

    logger.info(
        f"Parsed {workflow.shape.value} workflow {workflow_path}: "
        f"launch={workflow.launch_prompt.src_file}, updates={len(workflow.update_prompts)}"
    )
    return workflow


def determine_workflow_shape(path: str | Path) -> Optional[WorkflowShape]:
    """Best-effort shape detection; ``None`` when the file cannot be parsed."""
    try:
        return load_workflow(path).shape
    except WorkflowParseError as exc:
        logger.warning(f"Unable to determine workflow type for {path}: {exc}")
        return None
