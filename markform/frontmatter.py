"""
YAML frontmatter: splitting, schema validation and rendering.

    ---
    markform:
      spec: MF/0.1
      title: Company profile
      run_mode: fill
      harness:
        max_turns: 20
    roles: [user, agent]
    ---

Document keys are snake_case; camelCase spellings are accepted too. Both
resolve to internal attribute names through FRONTMATTER_KEYS.
"""

import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field as PydanticField, StrictInt, StrictStr
from pydantic import ValidationError as PydanticValidationError

from config.constants import (
    DEFAULT_ROLES,
    DEFAULT_ROLE_INSTRUCTIONS,
    DEFAULT_SPEC_VERSION,
    FRONTMATTER_NAMESPACE,
)
from config.logging_config import get_logger

from .errors import ParseError
from .model import FormMetadata

logger = get_logger(__name__)

# Document key -> internal attribute name (single mapping table)
FRONTMATTER_KEYS: Dict[str, str] = {
    "spec": "spec_version",
    "title": "title",
    "description": "description",
    "run_mode": "run_mode",
    "runMode": "run_mode",
    "roles": "roles",
    "role_instructions": "role_instructions",
    "roleInstructions": "role_instructions",
    "harness": "harness",
    "harness_config": "harness",
    "harnessConfig": "harness",
    "max_turns": "max_turns",
    "maxTurns": "max_turns",
    "max_patches_per_turn": "max_patches_per_turn",
    "maxPatchesPerTurn": "max_patches_per_turn",
    "max_issues_per_turn": "max_issues_per_turn",
    "maxIssuesPerTurn": "max_issues_per_turn",
    "max_fields_per_turn": "max_fields_per_turn",
    "maxFieldsPerTurn": "max_fields_per_turn",
    "max_groups_per_turn": "max_groups_per_turn",
    "maxGroupsPerTurn": "max_groups_per_turn",
}

# Internal attribute name -> canonical document key
CANONICAL_KEYS: Dict[str, str] = {
    "spec_version": "spec",
    "title": "title",
    "description": "description",
    "run_mode": "run_mode",
    "roles": "roles",
    "role_instructions": "role_instructions",
    "harness": "harness",
    "max_turns": "max_turns",
    "max_patches_per_turn": "max_patches_per_turn",
    "max_issues_per_turn": "max_issues_per_turn",
    "max_fields_per_turn": "max_fields_per_turn",
    "max_groups_per_turn": "max_groups_per_turn",
}

PositiveStrictInt = Annotated[StrictInt, PydanticField(gt=0)]

_DELIMITER_RE = re.compile(r"^(---|\.\.\.)[ \t]*$")


class HarnessSection(BaseModel):
    """Harness defaults declared by the form."""
    model_config = ConfigDict(extra="forbid")

    max_turns: Optional[PositiveStrictInt] = None
    max_patches_per_turn: Optional[PositiveStrictInt] = None
    max_issues_per_turn: Optional[PositiveStrictInt] = None
    max_fields_per_turn: Optional[PositiveStrictInt] = None
    max_groups_per_turn: Optional[PositiveStrictInt] = None


class MarkformSection(BaseModel):
    """Namespaced ``markform:`` settings block."""
    model_config = ConfigDict(extra="forbid")

    spec_version: StrictStr = DEFAULT_SPEC_VERSION
    title: Optional[StrictStr] = None
    description: Optional[StrictStr] = None
    run_mode: Optional[Literal["interactive", "fill", "research"]] = None
    roles: Optional[Annotated[List[StrictStr], PydanticField(min_length=1)]] = None
    role_instructions: Optional[Dict[StrictStr, StrictStr]] = None
    harness: HarnessSection = PydanticField(default_factory=HarnessSection)


def split_frontmatter(text: str) -> Tuple[Optional[str], str, int]:
    """
    Separate the frontmatter block from the body.

    Returns:
        (yaml_text or None, body, number of lines before the body)
    """
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].rstrip("\r\n").rstrip() != "---":
        return None, text, 0
    for idx in range(1, len(lines)):
        if _DELIMITER_RE.match(lines[idx].rstrip("\r\n")):
            yaml_text = "".join(lines[1:idx])
            body = "".join(lines[idx + 1:])
            return yaml_text, body, idx + 1
    raise ParseError("Unterminated frontmatter block", line=1, column=1)


def parse_frontmatter(text: str) -> Tuple[Optional[FormMetadata], str, int]:
    """
    Parse and validate the frontmatter of a document.

    Returns:
        (metadata or None when absent, body text, body line offset)

    Raises:
        ParseError: Malformed YAML, wrong shapes or unknown keys
    """
    yaml_text, body, offset = split_frontmatter(text)
    if yaml_text is None:
        return None, body, 0

    try:
        data = yaml.safe_load(yaml_text) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        line = mark.line + 2 if mark is not None else 1
        column = mark.column + 1 if mark is not None else None
        raise ParseError(f"Invalid frontmatter YAML: {getattr(e, 'problem', e)}", line=line, column=column)

    if not isinstance(data, dict):
        raise ParseError("Frontmatter must be a mapping", line=2, column=1)

    section = data.get(FRONTMATTER_NAMESPACE) or {}
    if not isinstance(section, dict):
        raise ParseError(f"'{FRONTMATTER_NAMESPACE}' frontmatter must be a mapping", line=_key_line(yaml_text, FRONTMATTER_NAMESPACE))

    merged = _remap(section)
    extra: Dict[str, Any] = {}
    for key, value in data.items():
        if key == FRONTMATTER_NAMESPACE:
            continue
        internal = FRONTMATTER_KEYS.get(key)
        if internal in ("roles", "role_instructions"):
            merged.setdefault(internal, value)
        else:
            extra[key] = value

    try:
        parsed = MarkformSection.model_validate(merged)
    except PydanticValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(part) for part in first["loc"])
        key = str(first["loc"][-1]) if first["loc"] else FRONTMATTER_NAMESPACE
        raise ParseError(
            f"Invalid frontmatter '{loc}': {first['msg']}",
            line=_key_line(yaml_text, CANONICAL_KEYS.get(key, key)),
        )

    metadata = FormMetadata(
        spec_version=parsed.spec_version,
        title=parsed.title,
        description=parsed.description,
        run_mode=parsed.run_mode,
        roles=list(parsed.roles) if parsed.roles else list(DEFAULT_ROLES),
        role_instructions=dict(parsed.role_instructions) if parsed.role_instructions else dict(DEFAULT_ROLE_INSTRUCTIONS),
        harness=parsed.harness.model_dump(exclude_none=True),
        extra=extra,
    )
    logger.debug(f"Frontmatter parsed: spec={metadata.spec_version}, run_mode={metadata.run_mode}")
    return metadata, body, offset


def render_frontmatter(metadata: Optional[FormMetadata]) -> str:
    """Canonical frontmatter block (empty string when there is no metadata)."""
    if metadata is None:
        return ""

    section: Dict[str, Any] = {CANONICAL_KEYS["spec_version"]: metadata.spec_version}
    for attr in ("title", "description", "run_mode"):
        value = getattr(metadata, attr)
        if value is not None:
            section[CANONICAL_KEYS[attr]] = value
    if metadata.harness:
        section[CANONICAL_KEYS["harness"]] = {
            CANONICAL_KEYS[key]: value for key, value in metadata.harness.items()
        }

    data: Dict[str, Any] = {FRONTMATTER_NAMESPACE: section}
    if metadata.roles != DEFAULT_ROLES:
        data[CANONICAL_KEYS["roles"]] = list(metadata.roles)
    if metadata.role_instructions != DEFAULT_ROLE_INSTRUCTIONS:
        data[CANONICAL_KEYS["role_instructions"]] = dict(metadata.role_instructions)
    data.update(metadata.extra)

    dumped = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{dumped}---\n"


def _remap(mapping: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in mapping.items():
        internal = FRONTMATTER_KEYS.get(key, key)
        if internal == "harness" and isinstance(value, dict):
            value = {FRONTMATTER_KEYS.get(k, k): v for k, v in value.items()}
        result[internal] = value
    return result


def _key_line(yaml_text: str, key: str) -> int:
    """Document line of the first ``key:`` in the frontmatter (falls back to line 1)."""
    pattern = re.compile(rf"^\s*{re.escape(key)}\s*:")
    for idx, line in enumerate(yaml_text.splitlines()):
        if pattern.match(line):
            return idx + 2
    return 1
