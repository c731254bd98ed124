"""Async database engine, session factory and declarative base."""

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from factchat.config import settings

Base = declarative_base()

engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)

# Each repository call opens its own session from this factory
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)
