"""
In-memory catalog of fonts and projects backed by Supabase.

DataCache is the only writer of the cached collections. Every mutation goes
through the store and is followed by a refetch, so computed fields (usage
counts, preview images) are always derived from the store's current rows.
"""

import asyncio
import logging
import mimetypes
import os
import uuid
from typing import Optional, Sequence, Union

from pydantic import ValidationError

from fontgarden.crawlers.open_graph import PreviewImageResolver, extract_first_url
from fontgarden.models import (
    Font,
    FontDraft,
    FontFormat,
    FontProject,
    MutationError,
    MutationResult,
    Project,
    ProjectDraft,
    ProjectUpdate,
    UploadedFile,
)
from fontgarden.utils.store import (
    EXTERNAL_REFERENCES_TABLE,
    FONT_PROJECTS_TABLE,
    FONTS_TABLE,
    PROJECTS_TABLE,
    StoreError,
    SupabaseStore,
)

logger = logging.getLogger(__name__)

FONT_FORMATS_BY_EXTENSION = {
    ".woff": FontFormat.WOFF,
    ".woff2": FontFormat.WOFF2,
    ".ttf": FontFormat.TRUETYPE,
    ".otf": FontFormat.OPENTYPE,
    ".svg": FontFormat.SVG,
    ".eot": FontFormat.EMBEDDED_OPENTYPE,
}

FONT_CONTENT_TYPES = {
    FontFormat.WOFF: "font/woff",
    FontFormat.WOFF2: "font/woff2",
    FontFormat.TRUETYPE: "font/ttf",
    FontFormat.OPENTYPE: "font/otf",
    FontFormat.SVG: "image/svg+xml",
    FontFormat.EMBEDDED_OPENTYPE: "application/vnd.ms-fontobject",
}

SIGN_IN_MESSAGE = "You must be signed in to do this"


def font_format_for(filename: str) -> Optional[FontFormat]:
    """Infer the font format from a file name's extension."""
    return FONT_FORMATS_BY_EXTENSION.get(os.path.splitext(filename)[1].lower())


def _same(a: Optional[str], b: Optional[str]) -> bool:
    return (a or "").strip().casefold() == (b or "").strip().casefold()


def _storage_path(user_id: str, filename: str) -> str:
    safe_name = os.path.basename(filename).replace(" ", "-")
    return f"{user_id}/{uuid.uuid4().hex}-{safe_name}"


class DataCache:
    """
    Single source of truth for the fonts and projects being displayed.

    Lifecycle:
    - await refresh_all() once the store is reachable
    - await aclose() on shutdown to let background writes finish
    """

    def __init__(
        self,
        store: SupabaseStore,
        resolver: PreviewImageResolver,
        font_bucket: str = "fonts",
        image_bucket: str = "project-images",
    ):
        """
        Initialize the cache.

        Args:
            store: Remote store adapter
            resolver: Preview image resolver for projects without one
            font_bucket: Storage bucket for uploaded font files
            image_bucket: Storage bucket for uploaded project images
        """
        self.store = store
        self.resolver = resolver
        self.font_bucket = font_bucket
        self.image_bucket = image_bucket

        self._fonts: list[Font] = []
        self._fonts_by_id: dict[str, Font] = {}
        self._projects: list[Project] = []
        self._projects_by_id: dict[str, Project] = {}

        self._fonts_error: Optional[str] = None
        self._projects_error: Optional[str] = None
        self._refreshes_in_flight = 0
        self._background_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def fonts(self) -> list[Font]:
        return list(self._fonts)

    @property
    def projects(self) -> list[Project]:
        return list(self._projects)

    @property
    def loading(self) -> bool:
        return self._refreshes_in_flight > 0

    @property
    def error(self) -> Optional[str]:
        """Last refresh failure of either collection, None once both load."""
        errors = [e for e in (self._fonts_error, self._projects_error) if e]
        return "; ".join(errors) or None

    def get_font_by_id(self, font_id: str) -> Optional[Font]:
        return self._fonts_by_id.get(font_id)

    def get_project_by_id(self, project_id: str) -> Optional[Project]:
        return self._projects_by_id.get(project_id)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_fonts(self) -> bool:
        """
        Refetch all fonts with their usage counts.

        The collection is replaced in one step; on failure the previous
        collection stays and `error` is set.
        """
        self._refreshes_in_flight += 1
        try:
            rows = await self.store.fetch_fonts()
        except StoreError as e:
            logger.error(f"Error fetching fonts: {e}")
            self._fonts_error = f"Failed to load fonts: {e}"
            return False
        finally:
            self._refreshes_in_flight -= 1

        fonts = []
        for row in rows:
            try:
                font = Font.from_row(row)
            except (KeyError, TypeError, AttributeError, ValidationError) as e:
                logger.warning(f"Skipping malformed font row {row.get('id')}: {e}")
                continue
            if not font.has_valid_source():
                logger.warning(f"Skipping font {font.id} ({font.name}): no family or font file")
                continue
            fonts.append(font)

        self._fonts, self._fonts_by_id = fonts, {f.id: f for f in fonts}
        self._fonts_error = None
        logger.debug(f"Loaded {len(fonts)} fonts")
        return True

    async def refresh_projects(self) -> bool:
        """
        Refetch all projects (newest first) with their font counts.

        Projects still missing a preview image get one resolved
        concurrently; resolved images are written back in the background.
        """
        self._refreshes_in_flight += 1
        try:
            try:
                rows = await self.store.fetch_projects()
            except StoreError as e:
                logger.error(f"Error fetching projects: {e}")
                self._projects_error = f"Failed to load projects: {e}"
                return False

            projects = []
            for row in rows:
                try:
                    projects.append(Project.from_row(row))
                except (KeyError, TypeError, AttributeError, ValidationError) as e:
                    logger.warning(f"Skipping malformed project row {row.get('id')}: {e}")

            await self._resolve_previews(projects)
        finally:
            self._refreshes_in_flight -= 1

        self._projects, self._projects_by_id = projects, {p.id: p for p in projects}
        self._projects_error = None
        logger.debug(f"Loaded {len(projects)} projects")
        return True

    async def refresh_all(self) -> bool:
        fonts_ok, projects_ok = await asyncio.gather(self.refresh_fonts(), self.refresh_projects())
        return fonts_ok and projects_ok

    async def _resolve_previews(self, projects: list[Project]) -> None:
        pending = []
        for project in projects:
            if project.images:
                if project.preview_image_url != project.images[0]:
                    if project.preview_image_url is None:
                        self._persist_preview(project.id, project.images[0])
                    project.preview_image_url = project.images[0]
            elif not project.preview_image_url and project.description:
                pending.append(project)

        if not pending:
            return

        results = await asyncio.gather(
            *(self.resolver.resolve_for(p) for p in pending),
            return_exceptions=True,
        )
        for project, result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.warning(f"Preview resolution failed for project {project.id}: {result}")
            elif result:
                project.preview_image_url = result
                self._persist_preview(project.id, result)

    def _persist_preview(self, project_id: str, url: str) -> None:
        """Write a resolved preview back without blocking the refresh."""
        task = asyncio.create_task(self._write_preview(project_id, url))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _write_preview(self, project_id: str, url: str) -> None:
        # Only fills an empty column so a concurrent edit is never clobbered
        try:
            updated = await self.store.update_if_null(PROJECTS_TABLE, project_id, "preview_image_url", url)
        except StoreError as e:
            logger.error(f"Error saving preview image for project {project_id}: {e}")
            return
        if updated:
            logger.info(f"Saved preview image for project {project_id}")

    async def wait_for_background(self) -> None:
        """Wait for pending background writes."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.wait_for_background()

    # ------------------------------------------------------------------
    # Association lookups
    # ------------------------------------------------------------------

    async def _associations(self, **match: str) -> Optional[list[FontProject]]:
        try:
            rows = await self.store.fetch_associations(**match)
        except StoreError as e:
            logger.error(f"Error fetching font/project associations: {e}")
            return None
        return [FontProject.from_row(r) for r in rows]

    async def fonts_for_project(self, project_id: str) -> list[Font]:
        """Fonts linked to a project, in cache order."""
        links = await self._associations(project_id=project_id)
        if not links:
            return []
        font_ids = {link.font_id for link in links}
        return [f for f in self._fonts if f.id in font_ids]

    async def projects_for_font(self, font_id: str) -> list[Project]:
        """Projects a font is used in, in cache order."""
        links = await self._associations(font_id=font_id)
        if not links:
            return []
        project_ids = {link.project_id for link in links}
        return [p for p in self._projects if p.id in project_ids]

    # ------------------------------------------------------------------
    # Fonts
    # ------------------------------------------------------------------

    def _validate_font_draft(self, draft: FontDraft) -> Optional[str]:
        if not draft.name.strip():
            return "Font name is required"
        if draft.is_custom and not (draft.font_file_path or "").strip():
            return "Custom fonts need an uploaded font file"
        if not draft.is_custom and not (draft.font_family or "").strip():
            return "Font family is required for hosted fonts"
        return None

    def _find_duplicate(self, draft: FontDraft) -> Optional[Font]:
        for font in self._fonts:
            if draft.is_custom and font.is_custom and _same(font.name, draft.name):
                return font
            if not draft.is_custom and not font.is_custom and _same(font.font_family, draft.font_family):
                return font
        return None

    async def add_font(self, draft: FontDraft) -> MutationResult:
        """Plant a new font; duplicates are rejected before any store call."""
        problem = self._validate_font_draft(draft)
        if problem:
            return MutationResult.failure(MutationError.VALIDATION, problem)

        existing = self._find_duplicate(draft)
        if existing:
            logger.info(f"Rejected duplicate font {draft.name!r} (matches {existing.id})")
            return MutationResult.failure(
                MutationError.DUPLICATE, f"{existing.name} is already in your garden"
            )

        user_id = await self.store.current_user_id()
        if not user_id:
            return MutationResult.failure(MutationError.AUTH_REQUIRED, SIGN_IN_MESSAGE)

        try:
            row = await self.store.insert(FONTS_TABLE, draft.to_row(user_id))
        except StoreError as e:
            logger.error(f"Error adding font {draft.name}: {e}")
            return MutationResult.failure(MutationError.STORE, "Failed to add font")

        logger.info(f"Added font {draft.name} ({row['id']})")
        await self.refresh_fonts()
        return MutationResult.success(id=str(row["id"]))

    async def delete_font(self, font_id: str) -> MutationResult:
        """Delete a font; the store removes its project links."""
        user_id = await self.store.current_user_id()
        if not user_id:
            return MutationResult.failure(MutationError.AUTH_REQUIRED, SIGN_IN_MESSAGE)

        try:
            removed = await self.store.delete(FONTS_TABLE, id=font_id)
        except StoreError as e:
            logger.error(f"Error deleting font {font_id}: {e}")
            return MutationResult.failure(MutationError.STORE, "Failed to delete font")

        if not removed:
            return MutationResult.failure(MutationError.NOT_FOUND, "Font not found")

        await asyncio.gather(self.refresh_fonts(), self.refresh_projects())
        return MutationResult.success(id=font_id)

    async def upload_font_file(self, filename: str, data: bytes) -> Optional[UploadedFile]:
        """Upload a custom font file; None if it cannot be stored."""
        font_format = font_format_for(filename)
        if font_format is None:
            logger.warning(f"Unsupported font file type: {filename}")
            return None

        user_id = await self.store.current_user_id()
        if not user_id:
            logger.warning("Font upload attempted without a session")
            return None

        if not await self.store.bucket_accessible(self.font_bucket):
            return None

        path = _storage_path(user_id, filename)
        try:
            public_url = await self.store.upload(
                self.font_bucket, path, data, FONT_CONTENT_TYPES[font_format]
            )
        except StoreError as e:
            logger.error(f"Error uploading font file {filename}: {e}")
            return None

        return UploadedFile(path=path, public_url=public_url, font_format=font_format)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def add_project(self, draft: ProjectDraft) -> MutationResult:
        """
        Create a project.

        A link in the description is resolved to a preview image before the
        insert, so the first fetch already has one. The result carries the
        new project's id.
        """
        if not draft.name.strip():
            return MutationResult.failure(MutationError.VALIDATION, "Project name is required")

        user_id = await self.store.current_user_id()
        if not user_id:
            return MutationResult.failure(MutationError.AUTH_REQUIRED, SIGN_IN_MESSAGE)

        preview = draft.preview_image_url
        if not preview and draft.images:
            preview = draft.images[0]
        elif not preview:
            url = extract_first_url(draft.description)
            if url:
                preview = await self.resolver.fetch_image_for_url(url)

        row = draft.model_copy(update={"preview_image_url": preview}).to_row(user_id)
        try:
            created = await self.store.insert(PROJECTS_TABLE, row)
        except StoreError as e:
            logger.error(f"Error adding project {draft.name}: {e}")
            return MutationResult.failure(MutationError.STORE, "Failed to create project")

        logger.info(f"Added project {draft.name} ({created['id']})")
        await self.refresh_projects()
        return MutationResult.success(id=str(created["id"]))

    async def update_project(self, project_id: str, update: ProjectUpdate) -> MutationResult:
        """Edit a project; a new link in the description refreshes its preview."""
        existing = self.get_project_by_id(project_id)
        if existing is None:
            return MutationResult.failure(MutationError.NOT_FOUND, "Project not found")
        if not update.name.strip():
            return MutationResult.failure(MutationError.VALIDATION, "Please enter a project name")

        user_id = await self.store.current_user_id()
        if not user_id:
            return MutationResult.failure(MutationError.AUTH_REQUIRED, SIGN_IN_MESSAGE)

        preview = existing.preview_image_url
        new_url = extract_first_url(update.description)
        if new_url and new_url != extract_first_url(existing.description) and not existing.images:
            image = await self.resolver.fetch_image_for_url(new_url)
            if image:
                preview = image

        values = {
            "name": update.name.strip(),
            "description": update.description,
            "type": update.type.value,
            "preview_image_url": preview,
        }
        try:
            rows = await self.store.update(PROJECTS_TABLE, project_id, values)
        except StoreError as e:
            logger.error(f"Error updating project {project_id}: {e}")
            return MutationResult.failure(MutationError.STORE, "Failed to update project")

        if not rows:
            return MutationResult.failure(MutationError.NOT_FOUND, "Project not found")

        await self.refresh_projects()
        return MutationResult.success(id=project_id)

    async def delete_project(self, project_id: str) -> MutationResult:
        """Delete a project; the store removes its font links."""
        user_id = await self.store.current_user_id()
        if not user_id:
            return MutationResult.failure(MutationError.AUTH_REQUIRED, SIGN_IN_MESSAGE)

        try:
            removed = await self.store.delete(PROJECTS_TABLE, id=project_id)
        except StoreError as e:
            logger.error(f"Error deleting project {project_id}: {e}")
            return MutationResult.failure(MutationError.STORE, "Failed to delete project")

        if not removed:
            return MutationResult.failure(MutationError.NOT_FOUND, "Project not found")

        await asyncio.gather(self.refresh_projects(), self.refresh_fonts())
        return MutationResult.success(id=project_id)

    async def add_project_images(
        self,
        project_id: str,
        files: Sequence[tuple[str, bytes]],
    ) -> MutationResult:
        """Upload images and append them to a project's gallery."""
        project = self.get_project_by_id(project_id)
        if project is None:
            return MutationResult.failure(MutationError.NOT_FOUND, "Project not found")

        user_id = await self.store.current_user_id()
        if not user_id:
            return MutationResult.failure(MutationError.AUTH_REQUIRED, SIGN_IN_MESSAGE)

        if not await self.store.bucket_accessible(self.image_bucket):
            return MutationResult.failure(MutationError.STORE, "Image storage is not accessible")

        uploaded = []
        for filename, data in files:
            content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
            try:
                uploaded.append(await self.store.upload(
                    self.image_bucket, _storage_path(user_id, filename), data, content_type
                ))
            except StoreError as e:
                logger.error(f"Error uploading image {filename}: {e}")

        if not uploaded:
            return MutationResult.failure(MutationError.STORE, "Failed to upload images")

        images = project.images + uploaded
        try:
            await self.store.update(
                PROJECTS_TABLE, project_id, {"images": images, "preview_image_url": images[0]}
            )
        except StoreError as e:
            logger.error(f"Error saving images for project {project_id}: {e}")
            return MutationResult.failure(MutationError.STORE, "Failed to save project images")

        await self.refresh_projects()
        if len(uploaded) < len(files):
            return MutationResult(
                ok=False,
                error=MutationError.STORE,
                id=project_id,
                message=f"{len(files) - len(uploaded)} of {len(files)} images failed to upload",
            )
        return MutationResult.success(id=project_id)

    async def add_external_references(
        self,
        project_name: str,
        links: Union[str, Sequence[str]],
        font_id: Optional[str] = None,
    ) -> MutationResult:
        """Store one external reference row per link (comma-separated string or list)."""
        if isinstance(links, str):
            links = links.split(",")
        urls = [link.strip() for link in links if link and link.strip()]
        if not urls:
            return MutationResult.success()

        user_id = await self.store.current_user_id()
        if not user_id:
            return MutationResult.failure(
                MutationError.AUTH_REQUIRED, "You must be logged in to add external references"
            )

        failed = 0
        for url in urls:
            try:
                await self.store.insert(EXTERNAL_REFERENCES_TABLE, {
                    "url": url,
                    "project_name": project_name,
                    "font_id": font_id,
                    "user_id": user_id,
                })
            except StoreError as e:
                logger.error(f"Error adding external reference {url}: {e}")
                failed += 1

        if failed:
            return MutationResult.failure(
                MutationError.STORE, f"Failed to add {failed} of {len(urls)} external references"
            )
        return MutationResult.success()

    # ------------------------------------------------------------------
    # Font <-> project links
    # ------------------------------------------------------------------

    async def add_font_to_project(self, font_id: str, project_id: str) -> MutationResult:
        if self.get_font_by_id(font_id) is None:
            return MutationResult.failure(MutationError.NOT_FOUND, "Font not found")
        if self.get_project_by_id(project_id) is None:
            return MutationResult.failure(MutationError.NOT_FOUND, "Project not found")

        user_id = await self.store.current_user_id()
        if not user_id:
            return MutationResult.failure(MutationError.AUTH_REQUIRED, SIGN_IN_MESSAGE)

        try:
            row = await self.store.insert(FONT_PROJECTS_TABLE, {"font_id": font_id, "project_id": project_id})
        except StoreError as e:
            logger.error(f"Error adding font {font_id} to project {project_id}: {e}")
            return MutationResult.failure(MutationError.STORE, "Failed to add font to project")

        await asyncio.gather(self.refresh_fonts(), self.refresh_projects())
        return MutationResult.success(id=str(row["id"]))

    async def remove_font_from_project(self, font_id: str, project_id: str) -> MutationResult:
        user_id = await self.store.current_user_id()
        if not user_id:
            return MutationResult.failure(MutationError.AUTH_REQUIRED, SIGN_IN_MESSAGE)

        try:
            removed = await self.store.delete(FONT_PROJECTS_TABLE, font_id=font_id, project_id=project_id)
        except StoreError as e:
            logger.error(f"Error removing font {font_id} from project {project_id}: {e}")
            return MutationResult.failure(MutationError.STORE, "Failed to remove font from project")

        if not removed:
            return MutationResult.failure(MutationError.NOT_FOUND, "Font is not in this project")

        await asyncio.gather(self.refresh_fonts(), self.refresh_projects())
        return MutationResult.success()
