"""Rule-based activity categorization.

Rules are plain data evaluated top to bottom; the first match wins, so rule
order is the only conflict-resolution mechanism.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

UNCATEGORIZED = "uncategorized"

CONFIDENCE_EQUALS = 90
CONFIDENCE_CONTAINS = 80
CONFIDENCE_DEFAULT = 50


@dataclass(frozen=True)
class Category:
    """A category an activity can be filed under."""

    id: str
    name: str
    color: str
    is_productivity: bool = True
    productivity_score: int = 50


@dataclass(frozen=True)
class CategoryRule:
    """Maps an app name or window title pattern to a category."""

    category_id: str
    type: Literal["app", "title"]
    pattern: str
    match_type: Literal["equals", "contains"] = "contains"


@dataclass(frozen=True)
class Categorization:
    """Result of classifying one (app, title) pair."""

    category_id: str
    auto_assigned: bool
    confidence: int


DEFAULT_CATEGORIES: dict[str, Category] = {
    c.id: c
    for c in [
        Category("development", "Development", "#3B82F6", True, 100),
        Category("communication", "Communication", "#8B5CF6", True, 75),
        Category("meetings", "Meetings", "#F59E0B", True, 70),
        Category("research", "Research", "#10B981", True, 85),
        Category("admin", "Administration", "#6B7280", True, 60),
        Category("entertainment", "Entertainment", "#EF4444", False, 0),
        Category("social", "Social Media", "#EC4899", False, 20),
        Category("design", "Design", "#EC4899", True, 90),
        Category(UNCATEGORIZED, "Uncategorized", "#9CA3AF", True, 50),
    ]
}


def _app(category_id: str, pattern: str, match_type: str = "contains") -> CategoryRule:
    return CategoryRule(category_id, "app", pattern, match_type)  # type: ignore[arg-type]


def _title(category_id: str, pattern: str) -> CategoryRule:
    return CategoryRule(category_id, "title", pattern, "contains")


DEFAULT_RULES: list[CategoryRule] = [
    # Development
    _app("development", "Visual Studio Code"),
    _app("development", "Code"),
    _app("development", "IntelliJ"),
    _app("development", "WebStorm"),
    _app("development", "PyCharm"),
    _app("development", "Terminal"),
    _title("development", "GitHub"),
    _title("development", "Stack Overflow"),
    # Communication
    _app("communication", "Slack"),
    _app("communication", "Teams"),
    _app("communication", "Outlook"),
    _app("communication", "Mail", "equals"),
    _title("communication", "Gmail"),
    # Meetings
    _title("meetings", "Meet"),
    _title("meetings", "Zoom"),
    _title("meetings", "Teams Meeting"),
    # Research
    _title("research", "Wikipedia"),
    _title("research", "Google Scholar"),
    _title("research", "Documentation"),
    _title("research", "Docs"),
    # Admin
    _app("admin", "Excel"),
    _app("admin", "Word"),
    _app("admin", "PowerPoint"),
    _title("admin", "Calendar"),
    # Entertainment
    _title("entertainment", "YouTube"),
    _title("entertainment", "Netflix"),
    _title("entertainment", "Hulu"),
    _title("entertainment", "Disney"),
    # Social
    _title("social", "Facebook"),
    _title("social", "Twitter"),
    _title("social", "LinkedIn"),
    _title("social", "Instagram"),
]


class Categorizer:
    """Classify activities using an ordered list of pattern rules.

    Usage:
        categorizer = Categorizer()
        result = categorizer.categorize("Slack", "general - Acme")
        # result.category_id == "communication", result.confidence == 80
    """

    def __init__(
        self,
        rules: list[CategoryRule] | None = None,
        categories: dict[str, Category] | None = None,
    ):
        self._rules: list[CategoryRule] = list(DEFAULT_RULES if rules is None else rules)
        self._categories: dict[str, Category] = dict(categories or DEFAULT_CATEGORIES)

    @property
    def rules(self) -> list[CategoryRule]:
        """Copy of the current rule list, in evaluation order."""
        return list(self._rules)

    @property
    def categories(self) -> list[Category]:
        return list(self._categories.values())

    def get_category(self, category_id: str) -> Category | None:
        return self._categories.get(category_id)

    def categorize(self, app_name: str | None, window_title: str | None) -> Categorization:
        """Return the category of the first matching rule."""
        app = (app_name or "").lower()
        title = (window_title or "").lower()

        for rule in self._rules:
            value = app if rule.type == "app" else title
            pattern = rule.pattern.lower()

            if rule.match_type == "equals" and value == pattern:
                return Categorization(rule.category_id, True, CONFIDENCE_EQUALS)
            if rule.match_type == "contains" and pattern in value:
                return Categorization(rule.category_id, True, CONFIDENCE_CONTAINS)

        return Categorization(UNCATEGORIZED, True, CONFIDENCE_DEFAULT)

    # Rule management

    def add_rule(self, rule: CategoryRule) -> None:
        """Add a rule ahead of all existing rules."""
        self._rules.insert(0, rule)

    def insert_rule(self, index: int, rule: CategoryRule) -> None:
        self._rules.insert(index, rule)

    def remove_rule(self, index: int) -> None:
        if 0 <= index < len(self._rules):
            del self._rules[index]
        else:
            logger.debug(f"Ignoring remove of rule index {index}")

    def update_rule(self, index: int, rule: CategoryRule) -> None:
        if 0 <= index < len(self._rules):
            self._rules[index] = rule
        else:
            logger.debug(f"Ignoring update of rule index {index}")

    def replace_rules(self, rules: list[CategoryRule]) -> None:
        self._rules = list(rules)
