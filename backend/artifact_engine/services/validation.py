"""Per-kind content validation and kind policies."""
import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from artifact_engine.core.artifact_types import ArtifactKind


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating content; ``reason`` explains a failure."""
    ok: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


PYTHON_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"import\s+\w+"),
    re.compile(r"from\s+\w+"),
    re.compile(r"def\s+\w+"),
    re.compile(r"class\s+\w+"),
    re.compile(r"print\s*\("),
    re.compile(r"if\s+__name__\s*=="),
)

# Mermaid diagram type keywords, matched case-insensitively against the first line
DIAGRAM_TYPES: Tuple[str, ...] = (
    "graph",
    "flowchart",
    "sequenceDiagram",
    "classDiagram",
    "stateDiagram",
    "erDiagram",
    "journey",
    "gantt",
    "pie",
    "gitGraph",
    "mindmap",
    "timeline",
    "sankey",
)

_DIAGRAM_DECLARATION = re.compile(
    r"^(%s)\b" % "|".join(re.escape(t.lower()) for t in DIAGRAM_TYPES)
)


def validate_code(content: str) -> ValidationResult:
    """Heuristic Python check: non-empty and at least one structural marker."""
    trimmed = content.strip()
    if not trimmed:
        return ValidationResult(False, "code is empty")

    if any(pattern.search(trimmed) for pattern in PYTHON_PATTERNS):
        return ValidationResult(True)
    if "=" in trimmed or "#" in trimmed:
        return ValidationResult(True)

    return ValidationResult(
        False,
        "no import, def, class, print, assignment or comment found; "
        "content does not look like Python"
    )


def validate_diagram(content: str) -> ValidationResult:
    """The first non-blank line must declare a known Mermaid diagram type."""
    first_line = next((line.strip() for line in content.splitlines() if line.strip()), "")
    if not first_line:
        return ValidationResult(False, "diagram is empty")

    # stateDiagram-v2, sankey-beta etc. still match on the keyword prefix
    if _DIAGRAM_DECLARATION.match(first_line.lower()):
        return ValidationResult(True)

    return ValidationResult(
        False,
        f"first line {first_line[:60]!r} does not declare a diagram type "
        f"(expected one of: {', '.join(DIAGRAM_TYPES)})"
    )


def validate_any(content: str) -> ValidationResult:
    """Text and sheets have no content-shape checks."""
    return ValidationResult(True)


@dataclass(frozen=True)
class ArtifactKindPolicy:
    """Everything that varies between artifact kinds."""
    kind: ArtifactKind
    validate: Callable[[str], ValidationResult]
    delta_event_name: str
    agent_name: str
    hard_fail_on_invalid: bool = False


KIND_POLICIES: Dict[ArtifactKind, ArtifactKindPolicy] = {
    ArtifactKind.TEXT: ArtifactKindPolicy(
        kind=ArtifactKind.TEXT,
        validate=validate_any,
        delta_event_name="textDelta",
        agent_name="DocumentAgent",
    ),
    ArtifactKind.SHEET: ArtifactKindPolicy(
        kind=ArtifactKind.SHEET,
        validate=validate_any,
        delta_event_name="sheetDelta",
        agent_name="DocumentAgent",
    ),
    ArtifactKind.CODE: ArtifactKindPolicy(
        kind=ArtifactKind.CODE,
        validate=validate_code,
        delta_event_name="codeDelta",
        agent_name="PythonAgent",
    ),
    ArtifactKind.DIAGRAM: ArtifactKindPolicy(
        kind=ArtifactKind.DIAGRAM,
        validate=validate_diagram,
        delta_event_name="codeDelta",
        agent_name="MermaidAgent",
        hard_fail_on_invalid=True,
    ),
}


def get_policy(kind: ArtifactKind) -> ArtifactKindPolicy:
    return KIND_POLICIES[ArtifactKind(kind)]


def validate(kind: ArtifactKind, content: str) -> ValidationResult:
    """Validate content with the strategy of its kind. Never raises on bad content."""
    return get_policy(kind).validate(content)
