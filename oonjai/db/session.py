from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from oonjai.core.config import settings

engine = create_engine(
    settings.SQLALCHEMY_DATABASE_URI,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_recycle=300,      # Recycle connections every 5 minutes
    pool_pre_ping=True,    # Validate connections before use
    pool_timeout=30,
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
