"""
Harness configuration.

Values are merged with the precedence: explicit call options, then the
form's frontmatter ``harness`` section, then ``MarkformSettings``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config.settings import MarkformSettings

from ..errors import HarnessConfigError
from ..model import ParsedForm

FILL_MODES = ("continue", "overwrite")

_LIMIT_KEYS = (
    "max_turns",
    "max_patches_per_turn",
    "max_issues_per_turn",
    "max_fields_per_turn",
    "max_groups_per_turn",
    "max_turns_this_call",
)


@dataclass
class HarnessConfig:
    """Resolved limits and targeting for one harness run."""
    max_turns: int
    max_patches_per_turn: int
    max_issues_per_turn: int
    target_roles: List[str] = field(default_factory=list)
    fill_mode: str = "continue"
    max_fields_per_turn: Optional[int] = None
    max_groups_per_turn: Optional[int] = None
    max_turns_this_call: Optional[int] = None


def resolve_harness_config(
    form: ParsedForm,
    settings: Optional[MarkformSettings] = None,
    **options: Any,
) -> HarnessConfig:
    """
    Merge call options, frontmatter defaults and settings.

    Args:
        form: Form whose frontmatter may carry harness defaults
        settings: Environment defaults (a fresh MarkformSettings if omitted)
        **options: Any HarnessConfig field; ``None`` means "not given"

    Raises:
        HarnessConfigError: Unknown option, non-positive limit, bad fill mode
            or an empty role list
    """
    settings = settings or MarkformSettings()
    unknown = set(options) - set(HarnessConfig.__dataclass_fields__)
    if unknown:
        raise HarnessConfigError(f"Unknown harness options: {', '.join(sorted(unknown))}")

    frontmatter: Dict[str, int] = dict(form.metadata.harness) if form.metadata else {}
    given = {key: value for key, value in options.items() if value is not None}

    def pick(key: str, default: Any = None) -> Any:
        if key in given:
            return given[key]
        return frontmatter.get(key, default)

    run_mode = form.metadata.run_mode if form.metadata else None
    target_roles = given.get("target_roles")
    if target_roles is None:
        target_roles = settings.default_roles(interactive=run_mode == "interactive")

    config = HarnessConfig(
        max_turns=pick("max_turns", settings.max_turns),
        max_patches_per_turn=pick("max_patches_per_turn", settings.max_patches_per_turn),
        max_issues_per_turn=pick("max_issues_per_turn", settings.max_issues_per_turn),
        target_roles=list(target_roles),
        fill_mode=given.get("fill_mode", settings.fill_mode),
        max_fields_per_turn=pick("max_fields_per_turn"),
        max_groups_per_turn=pick("max_groups_per_turn"),
        max_turns_this_call=given.get("max_turns_this_call"),
    )
    _check(config)
    return config


def _check(config: HarnessConfig):
    for key in _LIMIT_KEYS:
        value = getattr(config, key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise HarnessConfigError(f"{key} must be a positive integer, got {value!r}")
    if config.fill_mode not in FILL_MODES:
        raise HarnessConfigError(f"Unsupported fill mode: {config.fill_mode} (expected one of {', '.join(FILL_MODES)})")
    if not config.target_roles:
        raise HarnessConfigError("target_roles must not be empty")
