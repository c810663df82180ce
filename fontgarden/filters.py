"""
Filtering and sorting of the cached catalog.

Pure functions: they never mutate their inputs and every sort is stable,
so ties keep the order the store returned.
"""

import unicodedata
from typing import Iterable, Optional, Union

from fontgarden.models import (
    Font,
    FontCategory,
    GardenStats,
    Project,
    ProjectSort,
    ProjectType,
)

ALL = "all"


def collation_key(value: str) -> str:
    """Accent- and case-insensitive sort key for display names."""
    decomposed = unicodedata.normalize("NFKD", value or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def _matches(query: str, *fields: Optional[str]) -> bool:
    needle = query.strip().casefold()
    if not needle:
        return True
    return any(needle in (field or "").casefold() for field in fields)


def filter_fonts(
    fonts: Iterable[Font],
    query: str = "",
    category: Union[FontCategory, str] = ALL,
) -> list[Font]:
    """Fonts whose name contains query and whose category matches."""
    category = category.value if isinstance(category, FontCategory) else category
    return [
        font
        for font in fonts
        if _matches(query, font.name)
        and (category == ALL or font.category.value == category)
    ]


def sort_projects(projects: Iterable[Project], sort: Union[ProjectSort, str] = ProjectSort.NEWEST) -> list[Project]:
    sort = ProjectSort(sort)
    if sort == ProjectSort.NEWEST:
        return sorted(projects, key=lambda p: p.created_at, reverse=True)
    if sort == ProjectSort.OLDEST:
        return sorted(projects, key=lambda p: p.created_at)
    if sort == ProjectSort.NAME_ASC:
        return sorted(projects, key=lambda p: collation_key(p.name))
    return sorted(projects, key=lambda p: collation_key(p.name), reverse=True)


def filter_projects(
    projects: Iterable[Project],
    query: str = "",
    type_filter: Union[ProjectType, str] = ALL,
    sort: Union[ProjectSort, str] = ProjectSort.NEWEST,
) -> list[Project]:
    """
    Visible projects for the project list.

    Args:
        projects: Cached projects, in store order
        query: Case-insensitive substring matched against name or description
        type_filter: "personal", "reference" or "all"
        sort: newest, oldest, name-asc or name-desc

    Returns:
        A new, filtered and sorted list
    """
    type_filter = type_filter.value if isinstance(type_filter, ProjectType) else type_filter
    matching = [
        project
        for project in projects
        if _matches(query, project.name, project.description)
        and (type_filter == ALL or project.type.value == type_filter)
    ]
    return sort_projects(matching, sort)


def garden_order(fonts: Iterable[Font]) -> list[Font]:
    """
    Order fonts for the garden view.

    Most-used fonts first; unused fonts follow in name order. Fonts with
    the same non-zero usage keep their relative order.
    """
    return sorted(
        fonts,
        key=lambda f: (-f.project_count, collation_key(f.name) if f.project_count == 0 else ""),
    )


def garden_stats(fonts: Iterable[Font]) -> GardenStats:
    """Count used fonts (flowers) and unused fonts (buds)."""
    fonts = list(fonts)
    flowers = sum(1 for f in fonts if f.project_count > 0)
    return GardenStats(flowers=flowers, buds=len(fonts) - flowers)
