"""Health check endpoints."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health(request: Request) -> dict[str, object]:
    """Liveness plus identifier cache state."""

    caches = {
        name: resolver.snapshot_loaded_at is not None and not resolver.is_stale()
        for name, resolver in (
            ("skills", request.app.state.skill_resolver),
            ("staff", request.app.state.staff_resolver),
        )
    }
    return {"status": "ok", "identifier_caches_fresh": caches}
