from pathlib import Path

import pytest

from agentrelay.errors import WorkflowParseError
from agentrelay.models import WorkflowShape
from agentrelay.workflow import (
    determine_workflow_shape,
    infer_prompt_type,
    load_workflow,
    parse_timeout,
    parse_xml_workflow,
    parse_yaml_workflow,
)

WORKFLOWS = Path(__file__).parent.parent / "fixtures" / "workflows"


@pytest.mark.parametrize(
    "src, expected",
    [("a.xml", "pml"), ("a.md", "markdown"), ("a.txt", "text"), ("dir/A.MD", "markdown")],
)
def test_infer_prompt_type(src, expected):
    assert infer_prompt_type(src) == expected


@pytest.mark.parametrize("src", ["", "  ", "no-extension", "prompt.json"])
def test_infer_prompt_type_rejects_unsupported(src):
    with pytest.raises(WorkflowParseError):
        infer_prompt_type(src)


def test_load_xml_sequence():
    workflow = load_workflow(WORKFLOWS / "sequence.xml")

    assert workflow.shape is WorkflowShape.SEQUENCE
    assert workflow.model == "claude-4-sonnet"
    assert workflow.repository == "https://github.com/acme/widgets.git"
    assert workflow.launch_prompt.src_file == "prompt1.md"
    assert workflow.launch_prompt.type == "markdown"
    assert [p.src_file for p in workflow.update_prompts] == ["review.xml"]
    assert workflow.update_prompts[0].type == "pml"


def test_load_yaml_sequence_accepts_plain_and_mapping_prompts():
    workflow = load_workflow(WORKFLOWS / "sequence.yaml")

    assert workflow.shape is WorkflowShape.SEQUENCE
    assert [p.src_file for p in workflow.prompts] == ["prompt1.md", "prompt2.txt"]
    assert [p.type for p in workflow.prompts] == ["markdown", "text"]


def test_load_xml_parallel_with_bind_type():
    workflow = load_workflow(WORKFLOWS / "parallel.xml")

    assert workflow.shape is WorkflowShape.PARALLEL
    assert workflow.launch_prompt.src_file == "plan.md"
    assert workflow.update_prompts == []
    assert workflow.model == "claude-4-sonnet"
    parallel = workflow.parallel
    assert parallel.bind_result_type == "List_Integer"
    assert len(parallel.sequences) == 1
    branch_prompt = parallel.sequences[0].prompts[0]
    assert branch_prompt.src_file == "branch.md"
    assert branch_prompt.has_bind_result_exp

    plan = parallel.to_plan()
    assert plan.bind_result_type == "List_Integer"
    assert plan.branches[0].prompts[0].binds_result


def test_load_yaml_parallel_branches():
    workflow = load_workflow(WORKFLOWS / "parallel-branches.yaml")

    assert workflow.is_parallel
    assert workflow.parallel.bind_result_type is None
    sequences = workflow.parallel.sequences
    assert [s.model for s in sequences] == ["claude-4-sonnet", "gpt-5"]
    assert [len(s.prompts) for s in sequences] == [1, 2]
    refs = [p.src_file for p in workflow.referenced_prompts()]
    assert refs == ["plan.md", "branch-a.md", "branch-b.txt", "prompt2.txt"]


def test_xml_requires_pml_workflow_root():
    with pytest.raises(WorkflowParseError, match="Root element"):
        parse_xml_workflow("<workflow><sequence><prompt src='a.md'/></sequence></workflow>")


def test_xml_rejects_malformed_document():
    with pytest.raises(WorkflowParseError, match="Error parsing XML"):
        parse_xml_workflow("<pml-workflow><sequence>")


def test_xml_sequence_without_prompts():
    with pytest.raises(WorkflowParseError, match="No 'prompt' elements"):
        parse_xml_workflow("<pml-workflow><sequence/></pml-workflow>")


def test_xml_prompt_without_src():
    with pytest.raises(WorkflowParseError, match="src"):
        parse_xml_workflow("<pml-workflow><sequence><prompt/></sequence></pml-workflow>")


def test_xml_parallel_requires_sequence():
    with pytest.raises(WorkflowParseError, match="at least one sequence"):
        parse_xml_workflow("<pml-workflow><parallel src='plan.md'/></pml-workflow>")


def test_xml_without_sequence_or_parallel():
    with pytest.raises(WorkflowParseError, match="No 'sequence' or 'parallel'"):
        parse_xml_workflow("<pml-workflow/>")


def test_yaml_must_be_a_mapping():
    with pytest.raises(WorkflowParseError):
        parse_yaml_workflow("- just\n- a list\n")


def test_yaml_prompts_must_be_a_list():
    with pytest.raises(WorkflowParseError, match="must be a list"):
        parse_yaml_workflow("sequence:\n  prompts: a.md\n")


def test_load_workflow_missing_file(tmp_path):
    with pytest.raises(WorkflowParseError, match="does not exist"):
        load_workflow(tmp_path / "missing.xml")


def test_load_workflow_unsupported_format(tmp_path):
    path = tmp_path / "workflow.json"
    path.write_text("{}")
    with pytest.raises(WorkflowParseError, match="Unsupported workflow format"):
        load_workflow(path)


def test_determine_workflow_shape():
    assert determine_workflow_shape(WORKFLOWS / "sequence.xml") is WorkflowShape.SEQUENCE
    assert determine_workflow_shape(WORKFLOWS / "parallel.xml") is WorkflowShape.PARALLEL
    assert determine_workflow_shape(WORKFLOWS / "missing.xml") is None


@pytest.mark.parametrize(
    "value, expected",
    [("5m", 300000), ("1h", 3600000), (" 30M ", 1800000), ("2H", 7200000), (None, None), ("", None)],
)
def test_parse_timeout(value, expected):
    assert parse_timeout(value) == expected


@pytest.mark.parametrize(
    "value, message",
    [
        ("m", "Expected format"),
        ("xm", "is not a valid number"),
        ("0m", "greater than 0"),
        ("-5m", "greater than 0"),
        ("5s", "Unit must be 'm'"),
    ],
)
def test_parse_timeout_rejects_invalid(value, message):
    with pytest.raises(WorkflowParseError, match=message):
        parse_timeout(value)


def test_load_xml_sequence_with_timeout_and_fallback():
    workflow = load_workflow(WORKFLOWS / "timeout.xml")

    assert workflow.timeout_millis == 300000
    assert workflow.fallback_src == "fallback.md"
    assert workflow.fallback.type == "markdown"
    assert [p.src_file for p in workflow.referenced_prompts()] == [
        "prompt1.md",
        "prompt2.txt",
        "fallback.md",
    ]


def test_load_yaml_parallel_timeouts_per_sequence():
    workflow = load_workflow(WORKFLOWS / "parallel-timeout.yaml")

    assert workflow.timeout_millis == 3600000
    assert workflow.fallback_src == "fallback.md"
    first, second = workflow.parallel.to_plan().branches
    assert first.timeout_millis is None
    assert first.fallback_src is None
    assert second.timeout_millis == 1800000
    assert second.fallback_src == "fallback-branch.txt"
    assert "fallback-branch.txt" in [p.src_file for p in workflow.referenced_prompts()]


def test_fallback_requires_timeout():
    with pytest.raises(WorkflowParseError, match="fallback-src requires timeout"):
        parse_xml_workflow(
            "<pml-workflow><sequence fallback-src='fallback.md'>"
            "<prompt src='a.md'/></sequence></pml-workflow>"
        )


def test_fallback_must_have_prompt_extension():
    with pytest.raises(WorkflowParseError, match="Unsupported file extension"):
        parse_yaml_workflow(
            "parallel:\n  src: plan.md\n  timeout: 5m\n  fallback-src: fallback.json\n"
            "  sequences:\n    - prompts: [a.md]\n"
        )
