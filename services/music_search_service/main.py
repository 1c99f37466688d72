"""
Music Search Handler

Server-side facade over the Spotify and YouTube search APIs so that client
credentials never reach the browser.
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from eventsnaps.config import get_config
from eventsnaps.credentials import CredentialResolver, RestConfigStore
from eventsnaps.exceptions import MusicSearchError
from eventsnaps.logging import get_logger, setup_logging
from eventsnaps.middleware import CorrelationMiddleware
from eventsnaps.music import MusicSearchClient
from eventsnaps.schemas import MusicSearchRequest

logger = get_logger(__name__)

# Prometheus metrics
REQUEST_COUNT = Counter('music_search_requests_total', 'Total requests', ['action', 'status'])
REQUEST_DURATION = Histogram('music_search_request_duration_seconds', 'Request duration', ['action'])

SEARCH_YOUTUBE = "search_youtube"
SEARCH_SPOTIFY = "search_spotify"
GET_ARTIST_GENRES = "get_artist_genres"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    settings = get_config()
    setup_logging()

    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    store = None
    if settings.backend_url and settings.backend_anon_key:
        store = RestConfigStore(settings.backend_url, settings.backend_anon_key, http_client=http_client)
    app.state.music = MusicSearchClient(
        CredentialResolver(store, settings),
        http_client=http_client,
        max_retries=settings.http_max_retries,
    )
    logger.info("Music search handler initialized")
    yield

    await http_client.aclose()
    logger.info("Music search handler shutdown complete")


app = FastAPI(
    title="Music Search Handler",
    description="Spotify and YouTube track search",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(CorrelationMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "apikey", "x-client-info"],
)


def get_music_client(request: Request) -> MusicSearchClient:
    client = getattr(request.app.state, "music", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return client


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "music-search"}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/")
async def music_search(request: Request, music: MusicSearchClient = Depends(get_music_client)):
    """Dispatch on ``action``; without one, return a Spotify app token"""
    try:
        raw = await request.json()
    except ValueError:
        raw = {}
    body = MusicSearchRequest.model_validate(raw if isinstance(raw, dict) else {})
    action = body.action or "get_token"

    with REQUEST_DURATION.labels(action=action).time():
        try:
            if action == SEARCH_YOUTUBE:
                tracks = await music.search_youtube(body.query)
                content = {"tracks": [track.model_dump(mode="json") for track in tracks]}
            elif action == SEARCH_SPOTIFY:
                tracks = await music.search_spotify(body.query)
                content = {"tracks": [track.model_dump(mode="json") for track in tracks]}
            elif action == GET_ARTIST_GENRES:
                content = {"genres": await music.get_artist_genres(body.artists)}
            else:
                content = await music.get_spotify_token()
        except MusicSearchError as e:
            logger.warning(f"Music search failed: {e.message}", extra={"action": action, "status_code": e.status_code})
            REQUEST_COUNT.labels(action=action, status=str(e.status_code)).inc()
            return JSONResponse(status_code=e.status_code, content={"error": e.message})
        except Exception as e:
            logger.error(f"Music search failed: {e}", exc_info=True)
            REQUEST_COUNT.labels(action=action, status="500").inc()
            return JSONResponse(status_code=500, content={"error": str(e)})

    REQUEST_COUNT.labels(action=action, status="200").inc()
    return JSONResponse(status_code=200, content=content)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8002)
