from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from zenscribe.core.config import settings
from zenscribe.crud.crud_subscription import plan_crud
from zenscribe.crud.crud_user import user_crud
from zenscribe.db.base_class import Base
from zenscribe.db.session import AsyncSessionLocal, engine
from zenscribe.models.models import UserRole
from zenscribe.schemas.user import UserCreate


async def init_db(
        db_engine: AsyncEngine = engine,
        session_factory=AsyncSessionLocal,
) -> None:
    """
    Initialize database with tables, subscription plans and default data.
    """
    try:
        async with db_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with session_factory() as db:
            await plan_crud.ensure_defaults(db)
            await db.commit()
            await create_default_admin(db)
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise


async def create_default_admin(db: AsyncSession) -> None:
    """
    Create default admin user if it doesn't exist.
    """
    if settings.ENVIRONMENT == "production":
        return

    admin = await user_crud.get_by_email(db, email=settings.FIRST_ADMIN_EMAIL)
    if admin:
        logger.info("Default admin already exists")
        return

    logger.info("Creating default admin user")
    admin_data = UserCreate(
        email=settings.FIRST_ADMIN_EMAIL,
        password=settings.FIRST_ADMIN_PASSWORD,  # Development only
        full_name="Admin User",
    )
    await user_crud.create(db, obj_in=admin_data, role=UserRole.ADMIN)
    logger.info(f"Default admin created: {settings.FIRST_ADMIN_EMAIL}")
