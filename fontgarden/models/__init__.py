"""Pydantic models for the Font Garden service."""

from .schemas import (
    # Enums
    FontCategory,
    FontFormat,
    ProjectType,
    ProjectSort,
    ChangeType,
    MutationError,
    # Entities
    Font,
    Project,
    FontProject,
    ChangeEvent,
    # Drafts and results
    FontDraft,
    ProjectDraft,
    ProjectUpdate,
    MutationResult,
    UploadedFile,
    FontPairingSuggestion,
    PairingResult,
    # HTTP models
    CreateProjectRequest,
    GardenStats,
    GardenResponse,
    FontDetailResponse,
    ProjectDetailResponse,
    FontStylesheetResponse,
    HealthResponse,
    # Helpers
    parse_tags,
    join_tags,
)

__all__ = [
    "FontCategory",
    "FontFormat",
    "ProjectType",
    "ProjectSort",
    "ChangeType",
    "MutationError",
    "Font",
    "Project",
    "FontProject",
    "ChangeEvent",
    "FontDraft",
    "ProjectDraft",
    "ProjectUpdate",
    "MutationResult",
    "UploadedFile",
    "FontPairingSuggestion",
    "PairingResult",
    "CreateProjectRequest",
    "GardenStats",
    "GardenResponse",
    "FontDetailResponse",
    "ProjectDetailResponse",
    "FontStylesheetResponse",
    "HealthResponse",
    "parse_tags",
    "join_tags",
]
