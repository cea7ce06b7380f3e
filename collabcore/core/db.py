from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def create_db_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Асинхронный движок"""
    return create_async_engine(database_url, future=True, echo=echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Фабрика сессий"""
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
