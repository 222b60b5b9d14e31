"""
Unit tests for config/settings.py and markform/harness/config.py
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from config.settings import MarkformSettings
from markform import HarnessConfigError
from markform.harness.config import resolve_harness_config


class TestMarkformSettings:
    """Test environment-driven defaults."""

    def test_defaults(self):
        settings = MarkformSettings(_env_file=None)
        assert settings.max_turns == 100
        assert settings.fill_mode == "continue"
        assert settings.default_roles() == ["agent"]
        assert settings.default_roles(interactive=True) == ["user"]

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("MARKFORM_MAX_TURNS", "7")
        assert MarkformSettings(_env_file=None).max_turns == 7

    def test_rejects_non_positive_limit(self):
        with pytest.raises(PydanticValidationError):
            MarkformSettings(_env_file=None, max_patches_per_turn=0)

    def test_rejects_unknown_fill_mode(self):
        with pytest.raises(PydanticValidationError):
            MarkformSettings(_env_file=None, fill_mode="replace")


class TestResolveHarnessConfig:
    """Test option / frontmatter / settings precedence."""

    def test_frontmatter_beats_settings(self, company_form, test_settings):
        config = resolve_harness_config(company_form, test_settings)
        assert config.max_turns == 8
        assert config.max_patches_per_turn == test_settings.max_patches_per_turn

    def test_options_beat_frontmatter(self, company_form, test_settings):
        config = resolve_harness_config(company_form, test_settings, max_turns=3)
        assert config.max_turns == 3

    def test_none_means_not_given(self, company_form, test_settings):
        config = resolve_harness_config(company_form, test_settings, max_turns=None)
        assert config.max_turns == 8

    def test_settings_when_no_frontmatter(self, simple_form, test_settings):
        config = resolve_harness_config(simple_form, test_settings)
        assert config.max_turns == 10
        assert config.target_roles == ["agent"]
        assert config.max_fields_per_turn is None

    def test_interactive_run_mode_targets_user(self, test_settings):
        from markform import parse_form

        form = parse_form(
            "---\nmarkform:\n  spec: MF/0.1\n  run_mode: interactive\n---\n"
            '{% form id="f" %}\n{% field kind="string" id="a" label="A" %}{% /field %}\n{% /form %}\n'
        )
        assert resolve_harness_config(form, test_settings).target_roles == ["user"]

    @pytest.mark.parametrize("options", [
        {"max_turns": 0},
        {"max_patches_per_turn": -1},
        {"max_fields_per_turn": True},
        {"max_issues_per_turn": "5"},
        {"fill_mode": "append"},
        {"target_roles": []},
        {"colour": "blue"},
    ])
    def test_invalid_options(self, simple_form, test_settings, options):
        with pytest.raises(HarnessConfigError):
            resolve_harness_config(simple_form, test_settings, **options)
