"""
Font Garden Service - font catalog backed by Supabase

FastAPI service exposing the cached catalog:
- Fonts with usage counts, garden ordering and stylesheets
- Projects with preview images resolved from linked pages
- Font/project associations kept in sync through realtime changes
- LLM font pairing suggestions with curated fallbacks
"""

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from supabase import acreate_client

# Load environment variables
load_dotenv()

from fontgarden.config import Settings, get_settings
from fontgarden.crawlers.google_fonts import font_face_css, font_stack, stylesheet_url
from fontgarden.crawlers.open_graph import PreviewImageResolver
from fontgarden.crawlers.pairings import PairingClient
from fontgarden.data_cache import DataCache, font_format_for
from fontgarden.filters import ALL, filter_fonts, filter_projects, garden_order, garden_stats
from fontgarden.listener import ChangeListener
from fontgarden.models import (
    CreateProjectRequest,
    Font,
    FontCategory,
    FontDetailResponse,
    FontDraft,
    FontStylesheetResponse,
    GardenResponse,
    HealthResponse,
    MutationError,
    MutationResult,
    PairingResult,
    Project,
    ProjectDetailResponse,
    ProjectDraft,
    ProjectSort,
    ProjectType,
    ProjectUpdate,
    UploadedFile,
)
from fontgarden.utils.rate_limiter import FetchRateLimiter
from fontgarden.utils.store import StoreError, SupabaseStore

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Service start time for uptime tracking
start_time = time.time()

STATUS_BY_ERROR = {
    MutationError.VALIDATION: 400,
    MutationError.AUTH_REQUIRED: 401,
    MutationError.NOT_FOUND: 404,
    MutationError.DUPLICATE: 409,
    MutationError.STORE: 502,
}


# ============================================================================
# Services
# ============================================================================

@dataclass
class Services:
    """Long-lived objects shared by all requests."""
    cache: DataCache
    pairing: PairingClient
    listener: Optional[ChangeListener] = None

    async def start(self) -> None:
        if not await self.cache.refresh_all():
            logger.error(f"Initial catalog load failed: {self.cache.error}")

        if self.listener is not None:
            try:
                await self.listener.start()
            except StoreError as e:
                logger.error(f"Realtime updates unavailable: {e}")

    async def aclose(self) -> None:
        try:
            if self.listener is not None:
                await self.listener.stop()
        finally:
            await self.cache.aclose()
            await self.cache.resolver.aclose()
            await self.pairing.aclose()


async def build_services(settings: Settings) -> Services:
    """Connect to Supabase and wire up the cache, listener and clients."""
    client = await acreate_client(settings.supabase_url, settings.supabase_key)
    if settings.supabase_email and settings.supabase_password:
        await client.auth.sign_in_with_password(
            {"email": settings.supabase_email, "password": settings.supabase_password}
        )
        logger.info(f"Signed in as {settings.supabase_email}")
    else:
        logger.warning("No Supabase credentials configured; the catalog is read-only")

    store = SupabaseStore(client)
    resolver = PreviewImageResolver(
        proxy_urls=settings.og_proxy_urls,
        timeout=settings.og_fetch_timeout,
        rate_limiter=FetchRateLimiter(
            requests_per_minute=settings.og_requests_per_minute,
            max_concurrent=settings.og_max_concurrent,
        ),
    )
    cache = DataCache(
        store,
        resolver,
        font_bucket=settings.font_bucket,
        image_bucket=settings.image_bucket,
    )
    pairing = PairingClient(
        api_key=settings.openrouter_api_key,
        api_url=settings.openrouter_url,
        model=settings.openrouter_model,
        timeout=settings.pairing_timeout,
        api_key_loader=lambda: store.fetch_api_key("openrouter"),
    )
    return Services(cache=cache, pairing=pairing, listener=ChangeListener(store, cache))


def _services(request: Request) -> Services:
    return request.app.state.services


def _check(result: MutationResult) -> MutationResult:
    """Raise the HTTP error matching a failed mutation."""
    if not result.ok:
        raise HTTPException(status_code=STATUS_BY_ERROR[result.error], detail=result.message)
    return result


def _font_or_404(services: Services, font_id: str) -> Font:
    font = services.cache.get_font_by_id(font_id)
    if font is None:
        raise HTTPException(status_code=404, detail="Font not found")
    return font


def _project_or_404(services: Services, project_id: str) -> Project:
    project = services.cache.get_project_by_id(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


# ============================================================================
# FastAPI App
# ============================================================================

def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        services: Preconfigured services; built from settings on startup
            when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize and cleanup resources."""
        logger.info("Starting Font Garden service...")
        app.state.services = services or await build_services(settings)
        await app.state.services.start()
        logger.info("Font Garden service ready")
        try:
            yield
        finally:
            logger.info("Shutting down Font Garden service...")
            await app.state.services.aclose()

    app = FastAPI(
        title="Font Garden Service",
        description="Font catalog with projects, preview images and pairing suggestions",
        version=VERSION,
        lifespan=lifespan,
    )

    # When using allow_credentials=True, we cannot use wildcard origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins.split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # ------------------------------------------------------------------------
    # Health Check
    # ------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint."""
        cache = _services(request).cache
        return HealthResponse(
            status="degraded" if cache.error else "healthy",
            version=VERSION,
            uptime_seconds=time.time() - start_time,
            fonts_cached=len(cache.fonts),
            projects_cached=len(cache.projects),
            last_error=cache.error,
        )

    @app.post("/refresh", response_model=HealthResponse)
    async def refresh(request: Request):
        """Refetch fonts and projects from the store."""
        cache = _services(request).cache
        if not await cache.refresh_all():
            raise HTTPException(status_code=502, detail=cache.error)
        return await health_check(request)

    # ------------------------------------------------------------------------
    # Font Endpoints
    # ------------------------------------------------------------------------

    @app.get("/fonts", response_model=list[Font])
    async def list_fonts(request: Request, q: str = "", category: str = ALL):
        if category != ALL and category not in {c.value for c in FontCategory}:
            raise HTTPException(status_code=400, detail=f"Unknown category: {category}")
        return filter_fonts(_services(request).cache.fonts, q, category)

    @app.get("/fonts/garden", response_model=GardenResponse)
    async def font_garden(request: Request):
        """Fonts in garden order with flower/bud counts."""
        fonts = _services(request).cache.fonts
        return GardenResponse(fonts=garden_order(fonts), stats=garden_stats(fonts))

    @app.get("/fonts/{font_id}", response_model=FontDetailResponse)
    async def get_font(request: Request, font_id: str):
        services = _services(request)
        font = _font_or_404(services, font_id)
        return FontDetailResponse(font=font, projects=await services.cache.projects_for_font(font_id))

    @app.get("/fonts/{font_id}/css", response_model=FontStylesheetResponse)
    async def get_font_css(request: Request, font_id: str):
        font = _font_or_404(_services(request), font_id)
        return FontStylesheetResponse(
            font_id=font.id,
            css=font_face_css(font),
            font_stack=font_stack(font),
            stylesheet_url=stylesheet_url(font),
        )

    @app.get("/fonts/{font_id}/pairings", response_model=PairingResult)
    async def get_font_pairings(request: Request, font_id: str):
        """
        Suggest complementary fonts.

        Falls back to curated suggestions for the font's category when the
        pairing API is unavailable; see fallback_used and error.
        """
        services = _services(request)
        font = _font_or_404(services, font_id)
        return await services.pairing.fetch_pairings(font.name, font.category.value)

    @app.post("/fonts", response_model=MutationResult, status_code=201)
    async def create_font(request: Request, draft: FontDraft):
        logger.info(f"Adding font {draft.name} (custom={draft.is_custom})")
        return _check(await _services(request).cache.add_font(draft))

    @app.delete("/fonts/{font_id}", response_model=MutationResult)
    async def delete_font(request: Request, font_id: str):
        return _check(await _services(request).cache.delete_font(font_id))

    @app.put("/uploads/fonts/{filename}", response_model=UploadedFile, status_code=201)
    async def upload_font(request: Request, filename: str):
        """Upload a custom font file (raw request body) for use in POST /fonts."""
        if font_format_for(filename) is None:
            raise HTTPException(status_code=400, detail="Unsupported font file type")

        data = await request.body()
        if not data:
            raise HTTPException(status_code=400, detail="Empty font file")

        uploaded = await _services(request).cache.upload_font_file(filename, data)
        if uploaded is None:
            raise HTTPException(status_code=502, detail="Failed to upload font file")
        return uploaded

    # ------------------------------------------------------------------------
    # Project Endpoints
    # ------------------------------------------------------------------------

    @app.get("/projects", response_model=list[Project])
    async def list_projects(
        request: Request,
        q: str = "",
        type: str = Query(default=ALL),
        sort: ProjectSort = ProjectSort.NEWEST,
    ):
        if type != ALL and type not in {t.value for t in ProjectType}:
            raise HTTPException(status_code=400, detail=f"Unknown project type: {type}")
        return filter_projects(_services(request).cache.projects, q, type, sort)

    @app.get("/projects/{project_id}", response_model=ProjectDetailResponse)
    async def get_project(request: Request, project_id: str):
        services = _services(request)
        project = _project_or_404(services, project_id)
        return ProjectDetailResponse(
            project=project,
            fonts=await services.cache.fonts_for_project(project_id),
        )

    @app.post("/projects", response_model=MutationResult, status_code=201)
    async def create_project(request: Request, body: CreateProjectRequest):
        """Create a project; reference projects may carry comma-separated external links."""
        cache = _services(request).cache
        result = _check(await cache.add_project(ProjectDraft(**body.model_dump(exclude={"external_links"}))))

        if body.type == ProjectType.REFERENCE and body.external_links:
            references = await cache.add_external_references(body.name, body.external_links)
            if not references.ok:
                logger.warning(f"Project {result.id} created but {references.message}")
                result.message = references.message
        return result

    @app.patch("/projects/{project_id}", response_model=MutationResult)
    async def update_project(request: Request, project_id: str, update: ProjectUpdate):
        return _check(await _services(request).cache.update_project(project_id, update))

    @app.delete("/projects/{project_id}", response_model=MutationResult)
    async def delete_project(request: Request, project_id: str):
        return _check(await _services(request).cache.delete_project(project_id))

    @app.post("/projects/{project_id}/images/{filename}", response_model=MutationResult, status_code=201)
    async def upload_project_image(request: Request, project_id: str, filename: str):
        """Upload one image (raw request body) and append it to the project's gallery."""
        data = await request.body()
        if not data:
            raise HTTPException(status_code=400, detail="Empty image file")
        return _check(await _services(request).cache.add_project_images(project_id, [(filename, data)]))

    @app.put("/projects/{project_id}/fonts/{font_id}", response_model=MutationResult)
    async def add_font_to_project(request: Request, project_id: str, font_id: str):
        return _check(await _services(request).cache.add_font_to_project(font_id, project_id))

    @app.delete("/projects/{project_id}/fonts/{font_id}", response_model=MutationResult)
    async def remove_font_from_project(request: Request, project_id: str, font_id: str):
        return _check(await _services(request).cache.remove_font_from_project(font_id, project_id))

    # ------------------------------------------------------------------------
    # Root
    # ------------------------------------------------------------------------

    @app.get("/")
    async def root():
        """Root endpoint with service info."""
        return {
            "service": "Font Garden Service",
            "version": VERSION,
            "status": "running",
            "endpoints": [
                "/health",
                "/refresh",
                "/fonts",
                "/fonts/garden",
                "/fonts/{font_id}",
                "/fonts/{font_id}/css",
                "/fonts/{font_id}/pairings",
                "/uploads/fonts/{filename}",
                "/projects",
                "/projects/{project_id}",
                "/projects/{project_id}/images/{filename}",
                "/projects/{project_id}/fonts/{font_id}",
            ],
        }

    return app


app = create_app()
