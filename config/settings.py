#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Settings - Environment-driven defaults for the Markform engine.

Settings objects are built by the caller and passed explicitly to the
harness; no process-wide instance is kept, so harnesses with different
defaults can run side by side.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

from .constants import (
    AGENT_ROLE,
    USER_ROLE,
    DEFAULT_FILL_MODE,
    DEFAULT_MAX_TURNS,
    DEFAULT_MAX_PATCHES_PER_TURN,
    DEFAULT_MAX_ISSUES_PER_TURN,
    LOG_LEVEL,
)


# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent


class MarkformSettings(BaseSettings):
    """Harness and role defaults (override with MARKFORM_* env vars)"""

    # ========== Harness Limits ==========
    max_turns: int = DEFAULT_MAX_TURNS
    max_patches_per_turn: int = DEFAULT_MAX_PATCHES_PER_TURN
    max_issues_per_turn: int = DEFAULT_MAX_ISSUES_PER_TURN

    # ========== Roles ==========
    agent_role: str = AGENT_ROLE  # default target for autonomous fills
    interactive_role: str = USER_ROLE  # default target when run_mode is interactive

    # ========== Fill Behaviour ==========
    fill_mode: str = DEFAULT_FILL_MODE  # continue | overwrite

    # ========== Logging ==========
    log_level: str = LOG_LEVEL
    log_file: Optional[str] = None  # rotating file handler only when set
    log_console: bool = True

    class Config:
        env_prefix = "MARKFORM_"
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @field_validator("max_turns", "max_patches_per_turn", "max_issues_per_turn")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("harness limits must be positive integers")
        return value

    @field_validator("fill_mode")
    @classmethod
    def _known_fill_mode(cls, value: str) -> str:
        if value not in ("continue", "overwrite"):
            raise ValueError(f"Unsupported fill mode: {value}")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unsupported log level: {value}")
        return value

    def default_roles(self, interactive: bool = False) -> List[str]:
        """Target roles for a session of the given kind"""
        return [self.interactive_role if interactive else self.agent_role]
