import uuid
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def new_id() -> str:
    """String UUID primary key, portable across PostgreSQL and SQLite."""
    return str(uuid.uuid4())
