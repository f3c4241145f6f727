"""
V1 API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from cinebook.api.v1.endpoints import auth, health

api_router = APIRouter()

# Auth (register, login, session, user management, tickets)
api_router.include_router(auth.router)

# Liveness
api_router.include_router(health.router)
