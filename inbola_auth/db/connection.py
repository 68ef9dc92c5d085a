from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine,async_sessionmaker,AsyncSession
from sqlmodel import SQLModel
from inbola_auth.config.settings import config_settings
from inbola_auth.db.utils import _normalize_db_url


def build_engine(url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    database_url = _normalize_db_url(url or config_settings.DATABASE_URL)
    if echo is None:
        echo = config_settings.DB_ECHO
    return create_async_engine(database_url, echo=echo)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine,class_=AsyncSession,expire_on_commit=False)


async def create_all_tables(engine: AsyncEngine) -> None:
    # migrations own the schema in deployed envs; this is for dev and tests
    import inbola_auth.schema.full_schema  # noqa: F401  registers the tables on SQLModel.metadata

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
