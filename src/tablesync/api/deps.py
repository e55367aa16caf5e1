"""FastAPI dependencies: the app's engine and a per-request DB session."""
from typing import Generator

from fastapi import Request
from sqlmodel import Session


def get_engine_dep(request: Request):
    return request.app.state.engine


def get_session(request: Request) -> Generator[Session, None, None]:
    """Yields a DB session bound to the app's engine."""
    with Session(request.app.state.engine) as session:
        yield session
