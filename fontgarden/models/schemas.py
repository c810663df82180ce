"""Pydantic schemas for the Font Garden catalog and its HTTP service."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


# ============================================================================
# Enums
# ============================================================================

class FontCategory(str, Enum):
    """Classification of a font."""
    SERIF = "serif"
    SANS_SERIF = "sans-serif"
    DISPLAY = "display"
    HANDWRITING = "handwriting"
    MONOSPACE = "monospace"
    OTHER = "other"


class FontFormat(str, Enum):
    """Binary format of an uploaded font file (CSS @font-face format names)."""
    WOFF = "woff"
    WOFF2 = "woff2"
    TRUETYPE = "truetype"
    OPENTYPE = "opentype"
    SVG = "svg"
    EMBEDDED_OPENTYPE = "embedded-opentype"


class ProjectType(str, Enum):
    """Whether a project is the user's own work or an external reference."""
    PERSONAL = "personal"
    REFERENCE = "reference"


class ProjectSort(str, Enum):
    """Sort orders for the project list."""
    NEWEST = "newest"
    OLDEST = "oldest"
    NAME_ASC = "name-asc"
    NAME_DESC = "name-desc"


class ChangeType(str, Enum):
    """Realtime change notification types."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class MutationError(str, Enum):
    """Why a cache mutation was rejected."""
    VALIDATION = "validation"
    DUPLICATE = "duplicate"
    AUTH_REQUIRED = "auth_required"
    NOT_FOUND = "not_found"
    STORE = "store"


# ============================================================================
# Tag helpers (legacy comma-separated column)
# ============================================================================

def parse_tags(value: Optional[str]) -> list[str]:
    """Split the stored comma-separated tag string into a list."""
    if not value:
        return []
    return [tag.strip() for tag in value.split(",") if tag.strip()]


def join_tags(tags: list[str]) -> Optional[str]:
    """Join tags back into the stored column format."""
    cleaned = [tag.strip() for tag in tags if tag and tag.strip()]
    return ", ".join(cleaned) if cleaned else None


def _embedded_count(row: dict, relation: str) -> int:
    """Read a PostgREST embedded count, e.g. ``font_projects: [{"count": 3}]``."""
    value = row.get(relation)
    if isinstance(value, list) and value:
        return int(value[0].get("count", 0) or 0)
    if isinstance(value, dict):
        return int(value.get("count", 0) or 0)
    if isinstance(value, int):
        return value
    return 0


# ============================================================================
# Entities
# ============================================================================

class Font(BaseModel):
    """A font in the catalog, as displayed."""
    id: str
    name: str
    font_family: Optional[str] = None
    category: FontCategory = FontCategory.OTHER
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    is_custom: bool = False
    font_file_path: Optional[str] = None
    font_format: Optional[FontFormat] = None
    created_at: datetime
    updated_at: datetime
    project_count: int = 0

    @classmethod
    def from_row(cls, row: dict) -> "Font":
        return cls(
            id=str(row["id"]),
            name=row["name"],
            font_family=row.get("font_family"),
            category=row.get("category") or FontCategory.OTHER,
            notes=row.get("notes"),
            tags=parse_tags(row.get("tags")),
            is_custom=bool(row.get("is_custom", False)),
            font_file_path=row.get("font_file_path"),
            font_format=row.get("font_format"),
            created_at=row["created_at"],
            updated_at=row.get("updated_at") or row["created_at"],
            project_count=_embedded_count(row, "font_projects"),
        )

    def has_valid_source(self) -> bool:
        """Custom fonts need an uploaded file, hosted fonts need a family."""
        if self.is_custom:
            return bool(self.font_file_path)
        return bool(self.font_family)


class Project(BaseModel):
    """A project fonts can be attached to."""
    id: str
    name: str
    description: Optional[str] = None
    type: ProjectType = ProjectType.PERSONAL
    images: list[str] = Field(default_factory=list)
    preview_image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    font_count: int = 0

    @classmethod
    def from_row(cls, row: dict) -> "Project":
        return cls(
            id=str(row["id"]),
            name=row["name"],
            description=row.get("description"),
            type=row.get("type") or ProjectType.PERSONAL,
            images=list(row.get("images") or []),
            preview_image_url=row.get("preview_image_url"),
            created_at=row["created_at"],
            updated_at=row.get("updated_at") or row["created_at"],
            font_count=_embedded_count(row, "font_projects"),
        )


class FontProject(BaseModel):
    """Association row linking a font to a project."""
    id: str
    font_id: str
    project_id: str
    annotation: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "FontProject":
        return cls(
            id=str(row["id"]),
            font_id=str(row["font_id"]),
            project_id=str(row["project_id"]),
            annotation=row.get("annotation"),
            created_at=row.get("created_at"),
        )


class ChangeEvent(BaseModel):
    """A realtime change notification for one table."""
    table: str
    event_type: Optional[ChangeType] = None
    record_id: Optional[str] = None


# ============================================================================
# Drafts
# ============================================================================

class FontDraft(BaseModel):
    """Caller-supplied fields for a new font."""
    name: str
    category: FontCategory
    font_family: Optional[str] = None
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    is_custom: bool = False
    font_file_path: Optional[str] = None
    font_format: Optional[FontFormat] = None

    def to_row(self, user_id: str) -> dict[str, Any]:
        return {
            "name": self.name.strip(),
            "category": self.category.value,
            "font_family": None if self.is_custom else (self.font_family or "").strip(),
            "notes": self.notes,
            "tags": join_tags(self.tags),
            "is_custom": self.is_custom,
            "font_file_path": self.font_file_path if self.is_custom else None,
            "font_format": self.font_format.value if self.is_custom and self.font_format else None,
            "user_id": user_id,
        }


class ProjectDraft(BaseModel):
    """Caller-supplied fields for a new project."""
    name: str
    description: Optional[str] = None
    type: ProjectType = ProjectType.PERSONAL
    images: list[str] = Field(default_factory=list)
    preview_image_url: Optional[str] = None

    def to_row(self, user_id: str) -> dict[str, Any]:
        return {
            "name": self.name.strip(),
            "description": self.description,
            "type": self.type.value,
            "images": self.images,
            "preview_image_url": self.preview_image_url,
            "user_id": user_id,
        }


class ProjectUpdate(BaseModel):
    """Editable project fields."""
    name: str
    description: Optional[str] = None
    type: ProjectType = ProjectType.PERSONAL


class MutationResult(BaseModel):
    """Outcome of a DataCache mutation."""
    ok: bool
    error: Optional[MutationError] = None
    id: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, id: Optional[str] = None) -> "MutationResult":
        return cls(ok=True, id=id)

    @classmethod
    def failure(cls, error: MutationError, message: str) -> "MutationResult":
        return cls(ok=False, error=error, message=message)


class UploadedFile(BaseModel):
    """A file stored in a Supabase Storage bucket."""
    path: str
    public_url: str
    font_format: Optional[FontFormat] = None


# ============================================================================
# Pairing suggestions
# ============================================================================

class FontPairingSuggestion(BaseModel):
    """A complementary font suggested for a given font."""
    name: str
    category: str
    reason: str


class PairingResult(BaseModel):
    """Pairing suggestions, possibly from the static fallback set."""
    font_name: str
    font_category: str
    suggestions: list[FontPairingSuggestion]
    fallback_used: bool = False
    error: Optional[str] = None


# ============================================================================
# HTTP request/response models
# ============================================================================

class CreateProjectRequest(ProjectDraft):
    """Request to create a project, optionally with external reference links."""
    external_links: Optional[str] = Field(
        default=None, description="Comma-separated links stored as external references"
    )


class GardenStats(BaseModel):
    """Counts shown above the garden view."""
    flowers: int
    buds: int


class GardenResponse(BaseModel):
    fonts: list[Font]
    stats: GardenStats


class FontDetailResponse(BaseModel):
    font: Font
    projects: list[Project]


class ProjectDetailResponse(BaseModel):
    project: Project
    fonts: list[Font]


class FontStylesheetResponse(BaseModel):
    font_id: str
    css: str
    font_stack: str
    stylesheet_url: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str = "1.0.0"
    uptime_seconds: float = 0.0
    fonts_cached: int = 0
    projects_cached: int = 0
    last_error: Optional[str] = None
