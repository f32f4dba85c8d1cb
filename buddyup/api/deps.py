"""Shared FastAPI dependencies."""

from fastapi import Request

from buddyup.features.engine import Engine


def get_engine(request: Request) -> Engine:
    """Engine built in the app lifespan."""
    return request.app.state.engine
