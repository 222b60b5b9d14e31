"""
Pytest configuration and shared fixtures for Markform tests.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import MarkformSettings
from markform import apply_patches, parse_form

FORMS_DIR = PROJECT_ROOT / "tests" / "fixtures" / "forms"


def load_form_text(name: str) -> str:
    """Read a sample document from tests/fixtures/forms."""
    return (FORMS_DIR / name).read_text(encoding="utf-8")


# ============================================================================
# Fixtures: Configuration & Settings
# ============================================================================

@pytest.fixture
def test_settings():
    """Settings with small, deterministic harness limits."""
    return MarkformSettings(
        max_turns=10,
        max_patches_per_turn=20,
        max_issues_per_turn=10,
        fill_mode="continue",
    )


# ============================================================================
# Fixtures: Sample Documents
# ============================================================================

@pytest.fixture
def company_text() -> str:
    """Form with frontmatter, prose and a fenced code block around the form."""
    return load_form_text("company.form.md")


@pytest.fixture
def company_form(company_text):
    return parse_form(company_text)


@pytest.fixture
def release_text() -> str:
    """Form whose second field is a blocking approval checkpoint."""
    return load_form_text("release.form.md")


@pytest.fixture
def release_form(release_text):
    return parse_form(release_text)


@pytest.fixture
def survey_text() -> str:
    """Form written in HTML-comment syntax."""
    return load_form_text("survey.form.md")


@pytest.fixture
def kitchen_sink_text() -> str:
    """One field of every kind."""
    return load_form_text("kitchen_sink.form.md")


@pytest.fixture
def kitchen_sink_form(kitchen_sink_text):
    return parse_form(kitchen_sink_text)


@pytest.fixture
def simple_form():
    """Single required string field."""
    return parse_form(
        '{% form id="simple" %}\n\n'
        '{% field kind="string" id="name" label="Name" required=true %}{% /field %}\n\n'
        '{% /form %}\n'
    )


# ============================================================================
# Fixtures: Filled Forms
# ============================================================================

@pytest.fixture
def filled_company_form(company_form):
    """Company form with every field answered validly."""
    result = apply_patches(company_form, [
        {"op": "set_string", "fieldId": "name", "value": "Acme"},
        {"op": "set_number", "fieldId": "employees", "value": 42},
        {"op": "set_single_select", "fieldId": "size", "value": "small"},
        {"op": "set_string_list", "fieldId": "products", "value": ["Rockets", "Anvils"]},
        {"op": "set_url", "fieldId": "website", "value": "https://acme.example.com"},
        {"op": "set_checkboxes", "fieldId": "tasks", "value": {"research": "done", "review": "done"}},
    ])
    assert not result.rejections
    return result.form


# ============================================================================
# Session-level Setup
# ============================================================================

def pytest_configure(config):
    """Register the markers added below."""
    config.addinivalue_line("markers", "unit: fast tests of a single module")
    config.addinivalue_line("markers", "integration: tests driving the harness end to end")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers."""
    for item in items:
        # Auto-add 'unit' marker to test files in tests/unit/
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        # Auto-add 'integration' marker to test files in tests/integration/
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
