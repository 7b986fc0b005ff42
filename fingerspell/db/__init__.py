import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from fingerspell.config import load_settings

Base = declarative_base()

DATABASE_URL = load_settings().database_url
SQL_ECHO = os.getenv("FINGERSPELL_SQL_ECHO", "0") == "1"

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=SQL_ECHO, connect_args=connect_args)

Session = sessionmaker(bind=engine)


def get_session():
    return Session()
