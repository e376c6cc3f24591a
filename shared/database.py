"""
Database layer for the Team Task Tracker.

This module provides:
- Async engine and session management
- Repository classes for teams, categories, task statuses and activity logs
- Conflict-safe upserts backed by the tables' unique constraints
- A high-level service that applies task completions and builds read models

Every repository method takes the session explicitly; there is no module-level
engine or session. Callers own a ``DatabaseManager`` and pass it along.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, List, Dict, Any, AsyncGenerator, Iterable

from sqlalchemy import text, select, func
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import contains_eager, joinedload
from sqlalchemy.pool import NullPool

from config.settings import Settings, get_settings, get_database_url
from shared.avatar import generate_team_avatar
from shared.errors import PersistenceError
from shared.models import (
    Base,
    Category,
    TaskResultStatus,
    TeamModel,
    CategoryModel,
    TaskStatusModel,
    ActivityLogModel,
    Team,
    LeaderboardEntry,
    ActivityEntry,
    ModelConverter,
    utcnow,
)

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Database connection and session management."""

    def __init__(self, url: Optional[str] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.url = url or get_database_url(self.settings)
        self.async_engine = None
        self.AsyncSessionLocal = None
        self._initialized = False

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def initialize(self):
        """Create the async engine and session factory."""
        if self._initialized:
            return

        engine_options: Dict[str, Any] = {"echo": self.settings.database.echo}
        if self.is_sqlite:
            engine_options["poolclass"] = NullPool
        else:
            engine_options.update(
                pool_size=self.settings.database.pool_size,
                max_overflow=self.settings.database.max_overflow,
                pool_timeout=self.settings.database.pool_timeout,
                pool_recycle=self.settings.database.pool_recycle,
                pool_pre_ping=True,
            )

        self.async_engine = create_async_engine(self.url, **engine_options)
        self.AsyncSessionLocal = async_sessionmaker(
            self.async_engine, class_=AsyncSession, expire_on_commit=False
        )

        self._initialized = True
        logger.info("Database manager initialized successfully")

    async def create_tables(self):
        """Create all database tables."""
        self.initialize()
        async with self.async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    async def drop_tables(self):
        """Drop all database tables."""
        self.initialize()
        async with self.async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.info("Database tables dropped successfully")

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a session whose work is committed on exit and rolled back on error."""
        self.initialize()

        async with self.AsyncSessionLocal() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def health_check(self) -> Dict[str, Any]:
        """Perform database health check."""
        try:
            async with self.get_async_session() as session:
                result = await session.execute(text("SELECT 1"))
                result.fetchone()
            return {"status": "healthy", "timestamp": utcnow()}
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "error": str(e), "timestamp": utcnow()}

    async def close(self):
        """Close database connections."""
        if self.async_engine is not None:
            await self.async_engine.dispose()
        self._initialized = False
        logger.info("Database connections closed")


def dialect_insert(session: AsyncSession):
    """Dialect-specific ``insert`` construct offering ON CONFLICT clauses."""
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return postgresql_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise PersistenceError(f"Unsupported database dialect: {dialect}")


class BaseRepository:
    """Base repository class with common database operations."""

    def __init__(self, model_class):
        self.model_class = model_class

    async def create(self, session: AsyncSession, data: Dict[str, Any]) -> Any:
        """Create a new record."""
        instance = self.model_class(**data)
        session.add(instance)
        await session.flush()
        return instance

    async def count(self, session: AsyncSession) -> int:
        """Get total count of records."""
        result = await session.execute(select(func.count(self.model_class.id)))
        return result.scalar() or 0


class TeamRepository(BaseRepository):
    """Repository for team operations."""

    def __init__(self):
        super().__init__(TeamModel)

    async def get_by_name(self, session: AsyncSession, name: str) -> Optional[TeamModel]:
        result = await session.execute(select(TeamModel).where(TeamModel.name == name))
        return result.scalar_one_or_none()

    async def upsert(self, session: AsyncSession, name: str) -> TeamModel:
        """Return the team called ``name``, creating it with an avatar if absent."""
        team = await self.get_by_name(session, name)
        if team is not None:
            return team

        insert = dialect_insert(session)
        stmt = insert(TeamModel).values(
            id=uuid.uuid4(),
            name=name,
            avatar=generate_team_avatar(name),
            created_at=utcnow(),
        ).on_conflict_do_nothing(index_elements=["name"])
        result = await session.execute(stmt)
        if result.rowcount == 1:
            logger.info(f"Created team {name}")

        # A concurrent delivery may have won the insert; either way the row exists now
        return await self.get_by_name(session, name)


class CategoryRepository(BaseRepository):
    """Repository for per-team category counters."""

    def __init__(self):
        super().__init__(CategoryModel)

    async def get(
        self, session: AsyncSession, team_id: uuid.UUID, name: str
    ) -> Optional[CategoryModel]:
        result = await session.execute(
            select(CategoryModel).where(
                CategoryModel.team_id == team_id, CategoryModel.name == name
            )
        )
        return result.scalar_one_or_none()

    async def increment(
        self, session: AsyncSession, team_id: uuid.UUID, name: str, at: datetime
    ) -> None:
        """Atomically add one completed task, creating the row with a count of 1."""
        insert = dialect_insert(session)
        stmt = insert(CategoryModel).values(
            id=uuid.uuid4(),
            team_id=team_id,
            name=name,
            tasks_completed=1,
            last_active=at,
            created_at=at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["team_id", "name"],
            set_={
                "tasks_completed": CategoryModel.tasks_completed + 1,
                "last_active": at,
            },
        )
        await session.execute(stmt)

    async def ensure(
        self, session: AsyncSession, team_id: uuid.UUID, name: str, at: datetime
    ) -> None:
        """Create a zeroed row unless one exists."""
        insert = dialect_insert(session)
        stmt = insert(CategoryModel).values(
            id=uuid.uuid4(),
            team_id=team_id,
            name=name,
            tasks_completed=0,
            last_active=at,
            created_at=at,
        ).on_conflict_do_nothing(index_elements=["team_id", "name"])
        await session.execute(stmt)

    async def list_by_name_with_team(
        self, session: AsyncSession, name: str
    ) -> List[CategoryModel]:
        """Category rows named ``name`` in leaderboard order, teams eagerly loaded."""
        result = await session.execute(
            select(CategoryModel)
            .join(CategoryModel.team)
            .options(contains_eager(CategoryModel.team))
            .where(CategoryModel.name == name)
            .order_by(
                CategoryModel.tasks_completed.desc(),
                CategoryModel.last_active.asc(),
                TeamModel.name.asc(),
            )
        )
        return list(result.scalars().all())

    async def totals_for_team(self, session: AsyncSession, team_id: uuid.UUID) -> Dict[str, int]:
        result = await session.execute(
            select(CategoryModel.name, CategoryModel.tasks_completed).where(
                CategoryModel.team_id == team_id
            )
        )
        return {name: count for name, count in result.all()}


class TaskStatusRepository(BaseRepository):
    """Repository for recorded task completions."""

    def __init__(self):
        super().__init__(TaskStatusModel)

    async def get(
        self, session: AsyncSession, team_id: uuid.UUID, category: str, task_number: int
    ) -> Optional[TaskStatusModel]:
        result = await session.execute(
            select(TaskStatusModel).where(
                TaskStatusModel.team_id == team_id,
                TaskStatusModel.category == category,
                TaskStatusModel.task_number == task_number,
            )
        )
        return result.scalar_one_or_none()

    async def create_if_absent(
        self,
        session: AsyncSession,
        team_id: uuid.UUID,
        category: str,
        task_number: int,
        commit_hash: Optional[str],
        at: datetime,
    ) -> bool:
        """Insert the completion unless the unique key exists. True if a row was written."""
        insert = dialect_insert(session)
        stmt = insert(TaskStatusModel).values(
            id=uuid.uuid4(),
            team_id=team_id,
            category=category,
            task_number=task_number,
            commit_hash=commit_hash,
            completed_at=at,
        ).on_conflict_do_nothing(index_elements=["team_id", "category", "task_number"])
        result = await session.execute(stmt)
        return result.rowcount == 1


class ActivityLogRepository(BaseRepository):
    """Repository for the append-only activity feed."""

    def __init__(self):
        super().__init__(ActivityLogModel)

    async def list_recent_with_team(
        self, session: AsyncSession, limit: int = 50
    ) -> List[ActivityLogModel]:
        result = await session.execute(
            select(ActivityLogModel)
            .options(joinedload(ActivityLogModel.team))
            .order_by(ActivityLogModel.timestamp.desc(), ActivityLogModel.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


# Repository instances
team_repo = TeamRepository()
category_repo = CategoryRepository()
task_status_repo = TaskStatusRepository()
activity_log_repo = ActivityLogRepository()


class DatabaseService:
    """High-level database service with business logic."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def record_task_completion(
        self,
        team_name: str,
        category: Category,
        task_number: int,
        commit_hash: Optional[str],
    ) -> TaskResultStatus:
        """
        Record one (team, category, task) completion at most once.

        Runs in its own transaction. The existence check is an early exit; the
        unique key on task_statuses decides the outcome when two deliveries
        race, and the loser reports ``ALREADY_COMPLETED`` as well. Counters for
        the category and for Global move together with the TaskStatus row.

        Raises:
            PersistenceError: the store failed; nothing from this pair is kept.
        """
        category_name = Category(category).value
        try:
            async with self.db.get_async_session() as session:
                team = await team_repo.upsert(session, team_name)

                existing = await task_status_repo.get(
                    session, team.id, category_name, task_number
                )
                if existing is not None:
                    logger.info(f"{team_name} already completed {category_name} task {task_number}")
                    return TaskResultStatus.ALREADY_COMPLETED

                now = utcnow()
                created = await task_status_repo.create_if_absent(
                    session, team.id, category_name, task_number, commit_hash, now
                )
                if not created:
                    logger.info(
                        f"Concurrent delivery recorded {category_name} task {task_number} "
                        f"for {team_name} first"
                    )
                    return TaskResultStatus.ALREADY_COMPLETED

                await category_repo.increment(session, team.id, category_name, now)
                await category_repo.increment(session, team.id, Category.GLOBAL.value, now)
                await activity_log_repo.create(
                    session,
                    {
                        "team_id": team.id,
                        "category": category_name,
                        "message": f"Completed Task {task_number}",
                        "points": task_number,
                        "timestamp": now,
                    },
                )

            logger.info(f"{team_name} completed {category_name} task {task_number}")
            return TaskResultStatus.COMPLETED
        except SQLAlchemyError as e:
            logger.error(
                f"Error recording {category_name} task {task_number} for {team_name}: {e}"
            )
            raise PersistenceError(f"Failed to record task {task_number} for {team_name}", e) from e

    async def get_leaderboard(self, category: Category = Category.GLOBAL) -> List[LeaderboardEntry]:
        """Teams ranked by tasks completed, earlier last activity winning ties."""
        try:
            async with self.db.get_async_session() as session:
                rows = await category_repo.list_by_name_with_team(session, Category(category).value)
                return [ModelConverter.category_to_leaderboard_entry(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error getting leaderboard for {category}: {e}")
            raise PersistenceError("Failed to fetch leaderboard", e) from e

    async def get_recent_activity(self, limit: int = 50) -> List[ActivityEntry]:
        """Most recent activity records, newest first."""
        try:
            async with self.db.get_async_session() as session:
                rows = await activity_log_repo.list_recent_with_team(session, limit)
                return [ModelConverter.model_to_activity(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error getting recent activity: {e}")
            raise PersistenceError("Failed to fetch activity", e) from e

    async def get_team_totals(self, team_name: str) -> Dict[str, int]:
        """Tasks completed per category name for one team; empty if unknown."""
        try:
            async with self.db.get_async_session() as session:
                team = await team_repo.get_by_name(session, team_name)
                if team is None:
                    return {}
                return await category_repo.totals_for_team(session, team.id)
        except SQLAlchemyError as e:
            logger.error(f"Error getting totals for {team_name}: {e}")
            raise PersistenceError(f"Failed to fetch totals for {team_name}", e) from e

    async def seed_teams(self, names: Iterable[str]) -> List[Team]:
        """Create teams with zeroed category rows. Existing data is left untouched."""
        teams = []
        try:
            async with self.db.get_async_session() as session:
                for name in names:
                    team = await team_repo.upsert(session, name)
                    now = utcnow()
                    for category in Category:
                        await category_repo.ensure(session, team.id, category.value, now)
                    teams.append(ModelConverter.model_to_team(team))
        except SQLAlchemyError as e:
            logger.error(f"Error seeding teams: {e}")
            raise PersistenceError("Failed to seed teams", e) from e

        logger.info(f"Seeded {len(teams)} teams")
        return teams


# Database initialization
async def init_database(db: DatabaseManager) -> DatabaseManager:
    """Initialize database tables and connections."""
    db.initialize()
    await db.create_tables()
    logger.info("Database initialized successfully")
    return db


async def close_database(db: DatabaseManager):
    """Close database connections."""
    await db.close()


__all__ = [
    "DatabaseManager",
    "BaseRepository",
    "TeamRepository",
    "CategoryRepository",
    "TaskStatusRepository",
    "ActivityLogRepository",
    "DatabaseService",
    "dialect_insert",
    "init_database",
    "close_database",
]
