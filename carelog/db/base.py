# carelog/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All facility tables (users, residents, medications, audit) inherit from this."""
    pass
