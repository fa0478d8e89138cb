"""Turn a persisted prompt reference into the text sent to the agent."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional

from .constants import INPUT_PLACEHOLDER
from .errors import WorkflowParseError

logger = logging.getLogger(__name__)

_LIST_ITEM_TAGS = {"step", "item", "li", "constraint"}


def _heading(tag: str) -> str:
    return tag.replace("-", " ").replace("_", " ").strip().title()


def _text(element: ET.Element) -> str:
    return " ".join("".join(element.itertext()).split())


def _render(element: ET.Element, depth: int, lines: List[str]) -> None:
    children = list(element)
    if not children:
        text = _text(element)
        if text:
            lines.append(text)
            lines.append("")
        return

    own_text = " ".join((element.text or "").split())
    if own_text:
        lines.append(own_text)
        lines.append("")

    position = 0
    for child in children:
        if child.tag in _LIST_ITEM_TAGS:
            position += 1
            marker = f"{position}." if child.tag == "step" else "-"
            lines.append(f"{marker} {_text(child)}")
            continue
        if position:
            lines.append("")
            position = 0
        lines.append(f"{'#' * min(depth, 6)} {_heading(child.tag)}")
        lines.append("")
        _render(child, depth + 1, lines)
    if position:
        lines.append("")


def pml_to_markdown(xml_text: str) -> str:
    """Render a PML document as Markdown.

    Elements become headings, ``step`` children become a numbered list and
    ``item``/``li``/``constraint`` children a bulleted list. ``<input>``
    elements are kept verbatim so bound values can still be substituted.
    """
    protected = xml_text.replace(INPUT_PLACEHOLDER, "@@AGENTRELAY_INPUT@@")
    try:
        root = ET.fromstring(protected)
    except ET.ParseError as exc:
        raise WorkflowParseError(f"Invalid PML prompt: {exc}") from exc

    lines: List[str] = []
    title = root.get("title") or root.get("name")
    if title:
        lines.extend([f"# {title}", ""])
    _render(root, 2 if title else 1, lines)
    rendered = "\n".join(lines).strip() + "\n"
    return rendered.replace("@@AGENTRELAY_INPUT@@", INPUT_PLACEHOLDER)


def substitute_bound_value(content: str, bound_value: Optional[str]) -> str:
    """Fill the ``<input>INPUT</input>`` placeholder with ``bound_value``.

    The value stays wrapped in its ``<input>`` tag; ``None`` becomes an empty
    value. Content without a placeholder is returned unchanged.
    """
    value = "" if bound_value is None else bound_value
    if INPUT_PLACEHOLDER not in content:
        logger.warning("Prompt has no input placeholder, bound value not applied")
        return content
    return content.replace(INPUT_PLACEHOLDER, f"<input>{value}</input>")


class PromptLoader:
    """Read prompt files relative to a workflow and prepare them for sending."""

    def __init__(self, prompt_source_directory: Optional[str] = None):
        self.prompt_source_directory = prompt_source_directory

    def resolve(self, workflow_path: str, source_ref: str) -> Path:
        ref = Path(source_ref)
        if ref.is_absolute():
            return ref
        if self.prompt_source_directory:
            return Path(self.prompt_source_directory) / ref
        return Path(workflow_path).parent / ref

    def read(self, workflow_path: str, source_ref: str) -> str:
        path = self.resolve(workflow_path, source_ref)
        if not path.is_file():
            raise WorkflowParseError(f"Prompt file not found: {path}")
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise WorkflowParseError(f"Failed to read prompt file {path}: {exc}") from exc

    def load(
        self,
        workflow_path: str,
        source_ref: str,
        prompt_type: str = "markdown",
        bound_value: Optional[str] = None,
    ) -> str:
        content = self.read(workflow_path, source_ref)
        if prompt_type == "pml":
            content = pml_to_markdown(content)
        if bound_value is not None:
            logger.info(f"Applying bound value {bound_value!r} to {source_ref}")
            content = substitute_bound_value(content, bound_value)
        return content
