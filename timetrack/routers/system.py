"""Liveness endpoint; the client's connectivity probe polls it."""

from fastapi import APIRouter

router = APIRouter(tags=["system"])


@router.get("/health")
def health():
    """Check that the API is running."""
    return {"status": "ok"}
