from enum import Enum
from typing import Optional, Dict, Any, Tuple

from ..core.constants import GENERAL_CATEGORY
from ..core.models import UseCase

# (display name, icon) for the 6 parent use cases plus the fallback bucket
CATEGORY_DISPLAY_NAMES: Dict[str, Tuple[str, str]] = {
    "WOMENS_SAFETY": ("Women's Safety", "👩"),
    "ACCESSIBILITY": ("Accessibility", "♿"),
    "LABOR_RIGHTS": ("Labor Rights", "👷"),
    "FACILITIES": ("Facilities", "🏢"),
    "ENVIRONMENTAL": ("Environmental", "🌍"),
    "CIVIL_RESISTANCE": ("Civil Resistance", "🎙️"),
    GENERAL_CATEGORY: ("General", "📋"),
}

# Every known subcategory id -> parent use case. Rolls the ~40 report
# subcategories up into the 6 dashboard groups.
SUBCATEGORY_TO_USE_CASE: Dict[str, str] = {
    # Women's Safety
    "ASSAULT": "WOMENS_SAFETY",
    "HARASSMENT": "WOMENS_SAFETY",
    "UNSAFE_AREA": "WOMENS_SAFETY",
    "NO_EMERGENCY_HELP": "WOMENS_SAFETY",
    "STALKING": "WOMENS_SAFETY",
    # Accessibility
    "BROKEN_RAMP": "ACCESSIBILITY",
    "NO_TOILET": "ACCESSIBILITY",
    "NO_ELEVATOR": "ACCESSIBILITY",
    "INACCESSIBLE_DOOR": "ACCESSIBILITY",
    "NO_CAPTIONS": "ACCESSIBILITY",
    "BLOCKED_PATH": "ACCESSIBILITY",
    # Labor Rights
    "WAGE_THEFT": "LABOR_RIGHTS",
    "SAFETY_VIOLATION": "LABOR_RIGHTS",
    "EXCESSIVE_HOURS": "LABOR_RIGHTS",
    "NO_BENEFITS": "LABOR_RIGHTS",
    "CHILD_LABOR": "LABOR_RIGHTS",
    # Facilities
    "BROKEN_EQUIPMENT": "FACILITIES",
    "WATER_LEAK": "FACILITIES",
    "ELECTRICAL": "FACILITIES",
    "DIRTY": "FACILITIES",
    "PEST": "FACILITIES",
    "STRUCTURAL": "FACILITIES",
    # Environmental
    "OVERFLOWING_TRASH": "ENVIRONMENTAL",
    "SPILL": "ENVIRONMENTAL",
    "POLLUTION": "ENVIRONMENTAL",
    "BAD_ODOR": "ENVIRONMENTAL",
    "NOISE": "ENVIRONMENTAL",
    # Civil Resistance
    "POLICE_VIOLENCE": "CIVIL_RESISTANCE",
    "DETENTION": "CIVIL_RESISTANCE",
    "SUPPRESSION": "CIVIL_RESISTANCE",
    "CONFISCATION": "CIVIL_RESISTANCE",
    "INTIMIDATION": "CIVIL_RESISTANCE",
    "CENSORSHIP": "CIVIL_RESISTANCE",
    # Common / legacy tags
    "OTHER": GENERAL_CATEGORY,
    "GENERAL": GENERAL_CATEGORY,
    "SAFETY": "WOMENS_SAFETY",
    "FACILITY": "FACILITIES",
}

PARENT_TAGS = frozenset(u.value for u in UseCase)

def _tag(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    return str(value or "").strip().upper()


class CategoryRegistry:
    """
    Registry of parent use cases and the subcategory table.

    Resolves the dashboard category key of a report from its `useCase` and
    legacy `category` tags. Tables can be overridden (e.g. from a JSON file)
    but default to the built-in ones.
    """
    def __init__(
        self,
        display_names: Optional[Dict[str, Tuple[str, str]]] = None,
        subcategories: Optional[Dict[str, str]] = None,
    ):
        self.display_names = dict(display_names or CATEGORY_DISPLAY_NAMES)
        self.subcategories = {str(k).upper(): str(v).upper() for k, v in (subcategories or SUBCATEGORY_TO_USE_CASE).items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CategoryRegistry":
        """Build from {"display_names": {key: [name, icon]}, "subcategories": {...}}, merged over the built-in tables."""
        names = data.get("display_names") if isinstance(data, dict) else None
        subs = data.get("subcategories") if isinstance(data, dict) else None
        parsed_names = None
        if isinstance(names, dict):
            parsed_names = dict(CATEGORY_DISPLAY_NAMES)
            for k, v in names.items():
                if isinstance(v, (list, tuple)) and len(v) == 2:
                    parsed_names[str(k).upper()] = (str(v[0]), str(v[1]))
        parsed_subs = None
        if isinstance(subs, dict):
            parsed_subs = dict(SUBCATEGORY_TO_USE_CASE)
            parsed_subs.update({str(k).upper(): str(v).upper() for k, v in subs.items()})
        return cls(parsed_names, parsed_subs)

    def parent_of(self, tag: str) -> Optional[str]:
        """Parent use case for a subcategory id, or None."""
        if not tag:
            return None
        return self.subcategories.get(_tag(tag))

    def resolve(self, use_case: str, category: str) -> str:
        """
        Category key of a report, first rule that applies wins:
          1. useCase, when it is one of the 6 parent tags
          2. category reverse-mapped through the subcategory table
          3. category, when it already is a parent tag
          4. useCase reverse-mapped through the subcategory table
          5. GENERAL

        >>> registry.resolve("LABOR_RIGHTS", "WAGE_THEFT")
        'LABOR_RIGHTS'
        >>> registry.resolve("", "WAGE_THEFT")
        'LABOR_RIGHTS'
        >>> registry.resolve("", "unknown_tag")
        'GENERAL'
        """
        uc = _tag(use_case)
        cat = _tag(category)

        if uc and uc in PARENT_TAGS:
            return uc
        parent = self.parent_of(cat)
        if parent:
            return parent
        if cat in PARENT_TAGS:
            return cat
        parent = self.parent_of(uc)
        if parent:
            return parent
        return GENERAL_CATEGORY

    def display(self, key: str) -> Tuple[str, str]:
        """(display name, icon); unknown keys show the raw key with a generic icon."""
        return self.display_names.get(key, (key.replace("_", " ").title(), "📋"))


DEFAULT_REGISTRY = CategoryRegistry()

def resolve_category_key(use_case: str, category: str) -> str:
    return DEFAULT_REGISTRY.resolve(use_case, category)
