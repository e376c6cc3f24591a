"""
Task Tracker Service.

This service turns GitHub push deliveries into leaderboard progress:
- Signature verification of every delivery
- Task detection from commit messages and file paths
- Exactly-once recording of each team's completions
- Leaderboard and activity feed read endpoints
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Set

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from config.settings import Settings, get_settings, get_webhook_secret
from shared.database import DatabaseManager, DatabaseService, init_database, close_database
from shared.errors import (
    AuthenticationError,
    MalformedEventError,
    PersistenceError,
    UnsupportedCategoryError,
)
from shared.models import (
    ActivityEntry,
    Category,
    LeaderboardEntry,
    PushEvent,
    TaskResult,
    TaskResultStatus,
    WebhookResponse,
    utcnow,
)
from services.task_tracker.detection import aggregate_completions, map_branch_to_category
from services.task_tracker.security import verify_signature

SIGNATURE_HEADER = "X-Hub-Signature-256"

logger = logging.getLogger(__name__)


class TaskTrackerService:
    """Core task tracking service with business logic."""

    def __init__(self, db: DatabaseManager, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.db = db
        self.db_service = DatabaseService(db)

    async def initialize(self):
        """Initialize the service."""
        await init_database(self.db)
        logger.info("Task tracker service initialized successfully")

    async def close(self):
        """Close service connections."""
        await close_database(self.db)
        logger.info("Task tracker service connections closed")

    def authenticate(self, raw_body: bytes, signature: Optional[str]):
        """
        Reject deliveries not signed with the shared webhook secret.

        Raises:
            AuthenticationError: signature missing, wrong, or no secret configured.
        """
        if not signature:
            raise AuthenticationError("Missing signature")
        if not verify_signature(raw_body, signature, get_webhook_secret(self.settings)):
            raise AuthenticationError("Invalid signature")

    def parse_push_event(self, payload: Any) -> PushEvent:
        """
        Validate a decoded delivery as a push event.

        Raises:
            MalformedEventError: ``ref`` or ``commits`` is missing or malformed.
        """
        if not isinstance(payload, dict) or not payload.get("ref") or payload.get("commits") is None:
            raise MalformedEventError("Not a push event")
        try:
            return PushEvent.model_validate(payload)
        except ValidationError as e:
            raise MalformedEventError("Not a push event") from e

    def resolve_category(self, event: PushEvent) -> Category:
        """
        Category of the pushed branch.

        Raises:
            UnsupportedCategoryError: the branch maps to Global.
        """
        category = map_branch_to_category(event.ref)
        if not category.has_tasks:
            raise UnsupportedCategoryError(category.value)
        return category

    async def apply_completions(
        self,
        completions: Dict[str, Set[int]],
        category: Category,
        commit_hash: Optional[str],
    ) -> WebhookResponse:
        """
        Record every (team, task) pair, each in its own transaction.

        A failing pair is reported as ``failed`` and does not stop the others;
        pairs already committed stay committed.
        """
        results: List[TaskResult] = []
        for team_name, task_numbers in completions.items():
            for task_number in sorted(task_numbers):
                try:
                    status = await self.db_service.record_task_completion(
                        team_name, category, task_number, commit_hash
                    )
                    results.append(TaskResult(
                        team=team_name, category=category, task=task_number, status=status
                    ))
                except PersistenceError as e:
                    logger.error(
                        f"Failed to record {category.value} task {task_number} for {team_name}: {e}"
                    )
                    results.append(TaskResult(
                        team=team_name,
                        category=category,
                        task=task_number,
                        status=TaskResultStatus.FAILED,
                        error=str(e),
                    ))

        failed = sum(1 for result in results if result.status == TaskResultStatus.FAILED.value)
        return WebhookResponse(success=failed == 0, processed=len(results), results=results)

    async def process_push(self, event: PushEvent) -> WebhookResponse:
        """Detect and record the task completions carried by one push."""
        category = self.resolve_category(event)
        completions = aggregate_completions(event.commits, category)
        logger.info(
            f"Push to {event.ref}: {len(event.commits)} commits, "
            f"{sum(len(tasks) for tasks in completions.values())} candidate completions"
        )
        return await self.apply_completions(completions, category, event.head_commit_hash)

    async def process_payload(self, payload: Any) -> WebhookResponse:
        """Parse a decoded delivery and process it."""
        return await self.process_push(self.parse_push_event(payload))


router = APIRouter()


def get_service(request: Request) -> TaskTrackerService:
    return request.app.state.service


@router.get("/health")
async def health_check(service: TaskTrackerService = Depends(get_service)):
    """Health check endpoint."""
    db_health = await service.db.health_check()
    healthy = db_health["status"] == "healthy"
    content = {
        "status": "healthy" if healthy else "unhealthy",
        "service": "task_tracker",
        "timestamp": utcnow().isoformat(),
        "database": db_health["status"],
    }
    if not healthy:
        content["error"] = db_health.get("error")
    return JSONResponse(status_code=200 if healthy else 503, content=content)


@router.post("/api/github-webhook")
async def github_webhook(request: Request, service: TaskTrackerService = Depends(get_service)):
    """Receive a GitHub push delivery and record the tasks it completes."""
    # The signature covers the exact bytes GitHub sent
    raw_body = await request.body()
    try:
        service.authenticate(raw_body, request.headers.get(SIGNATURE_HEADER))
    except AuthenticationError as e:
        logger.warning(f"Rejected webhook delivery: {e.message}")
        return JSONResponse(status_code=401, content={"error": e.message})

    try:
        payload = json.loads(raw_body)
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON payload"})

    try:
        response = await service.process_payload(payload)
    except MalformedEventError:
        return JSONResponse(status_code=200, content={"message": "Not a push event"})
    except UnsupportedCategoryError as e:
        return JSONResponse(status_code=200, content={"message": str(e)})
    except Exception as e:
        logger.error(f"Webhook error: {e}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return JSONResponse(content=response.model_dump(mode="json", exclude_none=True))


@router.get("/api/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard(
    category: str = Query("Global", description="Web, Android, Core or Global"),
    service: TaskTrackerService = Depends(get_service),
):
    """Teams ranked within a category."""
    resolved = Category.from_name(category)
    if resolved is None:
        return []
    try:
        return await service.db_service.get_leaderboard(resolved)
    except Exception as e:
        logger.error(f"Leaderboard API error: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to fetch leaderboard"})


@router.get("/api/activity", response_model=List[ActivityEntry])
async def get_activity(
    limit: Optional[int] = Query(None, ge=1, le=200, description="Maximum records to return"),
    service: TaskTrackerService = Depends(get_service),
):
    """Most recent task completions, newest first."""
    try:
        return await service.db_service.get_recent_activity(
            limit or service.settings.leaderboard.activity_limit
        )
    except Exception as e:
        logger.error(f"Activity API error: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to fetch activity"})


def configure_logging(settings: Settings):
    logging.basicConfig(
        level=getattr(logging, settings.monitoring.log_level),
        format=settings.monitoring.log_format,
    )


def create_app(
    settings: Optional[Settings] = None, db: Optional[DatabaseManager] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    The database handle is created here (or injected by tests) and reaches
    handlers only through ``app.state.service``.
    """
    settings = settings or get_settings()
    service = TaskTrackerService(db or DatabaseManager(settings=settings), settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await service.initialize()
        yield
        await service.close()

    app = FastAPI(
        title="Task Tracker Service",
        description="GitHub push webhook task tracking and team leaderboard",
        version=settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


configure_logging(get_settings())
app = create_app()
