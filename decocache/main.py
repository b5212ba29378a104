"""
Deco Cache - cache administration service
Health, statistics and invalidation for the process-wide tiered cache
"""
import logging

from fastapi import FastAPI, HTTPException, Query, Request

from decocache import __version__
from decocache.cache import RequestCoalescer, build_key, build_tiered_cache
from config.settings import settings

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("main")

APP_NAME = "Deco Cache"

app = FastAPI(
    title=APP_NAME,
    description="Tiered cache behind category browsing, search and source listings",
    version=__version__,
)

# Single process-wide cache and coalescer, shared by every coordinator in this process
app.state.cache = build_tiered_cache(settings)
app.state.coalescer = RequestCoalescer(timeout=settings.coalesce_timeout_seconds)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": __version__,
        "full": f"{APP_NAME} {__version__}",
    }


@app.get("/cache/stats")
def cache_stats(request: Request):
    """Get cache statistics."""
    return {
        **request.app.state.cache.get_stats(),
        "coalescer": request.app.state.coalescer.get_stats(),
    }


@app.get("/cache/keys/build")
def build_cache_key(
    request: Request,
    prefix: str = Query(..., min_length=1, description="Key prefix, e.g. 'douban-movie'"),
):
    """Preview the key a parameter set maps to. Every other query param is a key param."""
    params = {k: v for k, v in request.query_params.items() if k != "prefix"}
    return {"key": build_key(prefix, params)}


@app.delete("/cache/{key:path}")
def invalidate_key(key: str, request: Request):
    """Remove one key from every tier."""
    if not key:
        raise HTTPException(status_code=400, detail="key is required")
    request.app.state.cache.delete(key)
    return {"deleted": key}


@app.delete("/cache")
def clear_cache(request: Request):
    """Clear all cached data."""
    cleared = request.app.state.cache.clear()
    logger.info(f"Cache cleared via API ({cleared} entries)")
    return {"cleared": cleared}


@app.post("/cache/sweep")
def sweep_cache(request: Request):
    """Drop expired entries now instead of waiting for reads."""
    return {"removed": request.app.state.cache.clean_expired()}
