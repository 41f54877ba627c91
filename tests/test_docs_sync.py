"""
Keeps docs/test_scenarios_business_summary.md aligned with the integration tests.

Fails when a scenario class or method is added without a business summary
entry, or when the summary still lists a scenario that was removed.
"""

import re
from pathlib import Path

import pytest

ROOT = Path(__file__).parent.parent
SCENARIOS = ROOT / 'tests' / 'test_integration_scenarios.py'
SUMMARY = ROOT / 'docs' / 'test_scenarios_business_summary.md'


def scenario_names(path: Path) -> tuple[set[str], set[str]]:
    """Test classes and test methods defined in a test module."""
    content = path.read_text(encoding='utf-8')
    classes = set(re.findall(r'^class (Test\w+)', content, re.MULTILINE))
    methods = set(re.findall(r'^\s+def (test_\w+)', content, re.MULTILINE))
    return classes, methods


def documented_names(path: Path) -> tuple[set[str], set[str]]:
    """Class and method names tagged in the business summary."""
    content = path.read_text(encoding='utf-8')
    classes = set(re.findall(r'\*\*Test Class\*\*:\s*`(Test\w+)`', content))
    methods = set(re.findall(r'\*\*Test Method\*\*:\s*`(test_\w+)`', content))
    return classes, methods


class TestScenarioDocumentation:
    """The business summary lists exactly the scenarios that exist."""

    @pytest.fixture
    def names(self):
        assert SCENARIOS.exists(), f"Test file not found: {SCENARIOS}"
        assert SUMMARY.exists(), f"Documentation file not found: {SUMMARY}"
        return scenario_names(SCENARIOS), documented_names(SUMMARY)

    def test_every_class_documented(self, names):
        (classes, _), (doc_classes, _) = names
        missing = classes - doc_classes
        assert not missing, f"Scenario classes missing from {SUMMARY.name}: {sorted(missing)}"

    def test_every_method_documented(self, names):
        (_, methods), (_, doc_methods) = names
        missing = methods - doc_methods
        assert not missing, f"Scenario methods missing from {SUMMARY.name}: {sorted(missing)}"

    def test_no_stale_entries(self, names):
        (classes, methods), (doc_classes, doc_methods) = names
        stale = (doc_classes - classes) | (doc_methods - methods)
        assert not stale, f"{SUMMARY.name} documents scenarios that no longer exist: {sorted(stale)}"
