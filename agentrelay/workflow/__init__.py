"""Workflow descriptions and the loader that reads them from disk."""

from .loader import (
    determine_workflow_shape,
    infer_prompt_type,
    load_workflow,
    parse_timeout,
    parse_xml_workflow,
    parse_yaml_workflow,
)
from .models import ParallelWorkflowData, PromptInfo, SequenceInfo, WorkflowData

__all__ = [
    "ParallelWorkflowData",
    "PromptInfo",
    "SequenceInfo",
    "WorkflowData",
    "determine_workflow_shape",
    "infer_prompt_type",
    "load_workflow",
    "parse_timeout",
    "parse_xml_workflow",
    "parse_yaml_workflow",
]
