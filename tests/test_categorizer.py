"""Tests for the rule-based categorizer."""

import pytest

from timekeeper.trackers.categorizer import DEFAULT_RULES, Categorizer, CategoryRule


@pytest.fixture
def categorizer():
    return Categorizer()


@pytest.mark.parametrize(
    "app_name, title, category_id, confidence",
    [
        ("Slack", "general - Acme", "communication", 80),
        ("Mail", "Inbox", "communication", 90),
        ("Visual Studio Code", "app.py", "development", 80),
        ("Safari", "YouTube - cats", "entertainment", 80),
        ("Google Chrome", "Zoom Docs", "meetings", 80),
        ("Finder", "Downloads", "uncategorized", 50),
    ],
)
def test_default_rules(categorizer, app_name, title, category_id, confidence):
    result = categorizer.categorize(app_name, title)
    assert result.category_id == category_id
    assert result.confidence == confidence
    assert result.auto_assigned is True


def test_matching_is_case_insensitive(categorizer):
    assert categorizer.categorize("SLACK", "").category_id == "communication"
    assert categorizer.categorize("Firefox", "WIKIPEDIA - Python").category_id == "research"


def test_equals_requires_full_match(categorizer):
    # "Mail" is an equals rule; "Mailspring" falls through to the default
    assert categorizer.categorize("Mailspring", "Drafts").category_id == "uncategorized"


def test_missing_inputs(categorizer):
    result = categorizer.categorize(None, None)
    assert result.category_id == "uncategorized"
    assert result.confidence == 50


def test_categorization_is_deterministic(categorizer):
    first = categorizer.categorize("Arc", "GitHub - pulls")
    assert all(categorizer.categorize("Arc", "GitHub - pulls") == first for _ in range(5))


class TestRuleManagement:
    def test_add_rule_takes_precedence(self, categorizer):
        categorizer.add_rule(CategoryRule("social", "app", "Slack", "equals"))
        result = categorizer.categorize("Slack", "random")
        assert result.category_id == "social"
        assert result.confidence == 90

    def test_insert_and_remove(self, categorizer):
        rule = CategoryRule("design", "app", "Figma")
        categorizer.insert_rule(1, rule)
        assert categorizer.rules[1] == rule
        assert categorizer.categorize("Figma", "Board").category_id == "design"

        categorizer.remove_rule(1)
        assert rule not in categorizer.rules
        assert categorizer.categorize("Figma", "Board").category_id == "uncategorized"

    def test_update_rule(self, categorizer):
        categorizer.update_rule(0, CategoryRule("design", "app", "Sketch"))
        assert categorizer.categorize("Sketch", "").category_id == "design"

    def test_out_of_range_indexes_are_ignored(self, categorizer):
        before = categorizer.rules
        categorizer.remove_rule(len(before))
        categorizer.remove_rule(-1)
        categorizer.update_rule(999, CategoryRule("design", "app", "Sketch"))
        assert categorizer.rules == before

    def test_rules_returns_a_copy(self, categorizer):
        categorizer.rules.clear()
        assert len(categorizer.rules) == len(DEFAULT_RULES)

    def test_categories(self, categorizer):
        ids = {c.id for c in categorizer.categories}
        assert {"development", "communication", "uncategorized"} <= ids
        assert categorizer.get_category("entertainment").is_productivity is False
        assert categorizer.get_category("nope") is None
