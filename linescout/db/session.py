from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from linescout.core.config import settings

engine_kwargs: dict[str, object] = {
    "pool_pre_ping": True,
}

if not settings.database_url.lower().startswith("sqlite"):
    # Pool tuning only applies to networked databases.
    engine_kwargs.update(
        {
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
            "pool_timeout": settings.db_pool_timeout_seconds,
            "pool_recycle": settings.db_pool_recycle_seconds,
        }
    )

engine = create_engine(settings.database_url, **engine_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
