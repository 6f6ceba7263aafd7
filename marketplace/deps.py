"""
Request dependencies. Collaborators are attached to app.state at startup and
overridden in tests through app.dependency_overrides.
"""
from fastapi import Request

from marketplace.db import Store
from marketplace.notifications import Dispatcher
from marketplace.sessions import CheckoutSessionStore


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def get_sessions(request: Request) -> CheckoutSessionStore:
    return request.app.state.sessions
