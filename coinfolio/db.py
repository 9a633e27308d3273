import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./coinfolio.db")  # e.g. postgresql://user:pass@db:5432/portfolio


def make_engine(url: str):
    if url.startswith("sqlite"):
        # FastAPI workers and the refresh scheduler share connections
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
