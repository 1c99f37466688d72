"""
Music search facade over Spotify and YouTube.

Spotify is searched with an app token from the client-credentials flow;
YouTube through the Data API v3 video search. Both are normalized into
``Track`` objects. Failures raise ``MusicSearchError`` carrying the HTTP
status the caller should surface.
"""

import logging
from typing import Dict, List, Optional

import httpx

from .credentials import (
    CredentialResolver, SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET, YOUTUBE_API_KEY
)
from .exceptions import MusicSearchError
from .models import MusicProvider
from .retry import RetryableError, NetworkError, convert_http_error, exponential_backoff
from .schemas import Track

logger = logging.getLogger(__name__)

SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_SEARCH_URL = "https://api.spotify.com/v1/search"
YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"

SEARCH_LIMIT = 10
MAX_GENRE_ARTISTS = 5
UNKNOWN_GENRE = "unknown"


def _error_message(resp: httpx.Response, default: str) -> str:
    try:
        data = resp.json()
    except ValueError:
        return default
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return error.get("message") or default
        return data.get("error_description") or (error if isinstance(error, str) else None) or default
    return default


def _youtube_track(item: dict) -> Track:
    snippet = item.get("snippet") or {}
    thumbnails = snippet.get("thumbnails") or {}
    art = (thumbnails.get("high") or {}).get("url") or (thumbnails.get("default") or {}).get("url")
    return Track(
        id=(item.get("id") or {}).get("videoId") or "",
        title=snippet.get("title") or "",
        artist=snippet.get("channelTitle") or "",
        album_art=art,
        preview_url=None,
        provider=MusicProvider.YOUTUBE,
    )


def _spotify_track(item: dict) -> Track:
    images = (item.get("album") or {}).get("images") or []
    return Track(
        id=item.get("id") or "",
        title=item.get("name") or "",
        artist=", ".join(a.get("name", "") for a in item.get("artists") or []),
        album_art=images[0].get("url") if images else None,
        preview_url=item.get("preview_url"),
        provider=MusicProvider.SPOTIFY,
    )


class MusicSearchClient:
    """Spotify / YouTube search with credentials from admin_config"""

    def __init__(
        self,
        credentials: CredentialResolver,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
        max_retries: int = 2,
    ):
        self.credentials = credentials
        self.http_client = http_client
        self.timeout = timeout
        self.max_retries = max_retries

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, retrying 429/5xx/network failures with backoff.

        Other non-2xx responses are returned for the caller to map.
        """
        @exponential_backoff(max_retries=self.max_retries, base_delay=1.0, max_delay=10.0)
        async def send(client: httpx.AsyncClient) -> httpx.Response:
            try:
                resp = await client.request(method, url, **kwargs)
            except httpx.RequestError as e:
                raise NetworkError(f"Network error calling {url}: {e}")
            if resp.status_code in (408, 429) or resp.status_code >= 500:
                raise convert_http_error(resp.status_code, _error_message(resp, resp.reason_phrase))
            return resp

        if self.http_client is not None:
            return await send(self.http_client)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await send(client)

    async def _spotify_credentials(self) -> Dict[str, Optional[str]]:
        return await self.credentials.get_many([SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET])

    async def get_spotify_token(self) -> dict:
        """Client-credentials token object (access_token, token_type, expires_in)"""
        creds = await self._spotify_credentials()
        client_id, client_secret = creds[SPOTIFY_CLIENT_ID], creds[SPOTIFY_CLIENT_SECRET]
        if not client_id or not client_secret:
            raise MusicSearchError("Spotify credentials not configured. Add them in the admin dashboard.", 400)
        return await self._request_token(client_id, client_secret)

    async def _request_token(self, client_id: str, client_secret: str) -> dict:
        try:
            resp = await self._send(
                "POST", SPOTIFY_TOKEN_URL,
                data={"grant_type": "client_credentials"},
                auth=(client_id, client_secret),
            )
        except RetryableError as e:
            raise MusicSearchError(f"Failed to get Spotify token: {e}", 500)
        if resp.status_code != 200:
            raise MusicSearchError(_error_message(resp, "Failed to get Spotify token"), 500)
        return resp.json()

    async def search_spotify(self, query: Optional[str]) -> List[Track]:
        creds = await self._spotify_credentials()
        client_id, client_secret = creds[SPOTIFY_CLIENT_ID], creds[SPOTIFY_CLIENT_SECRET]
        if not client_id or not client_secret:
            raise MusicSearchError("Spotify credentials not configured. Add them in the admin dashboard.", 400)
        if not query:
            raise MusicSearchError("Query is required", 400)

        token = await self._request_token(client_id, client_secret)
        try:
            resp = await self._send(
                "GET", SPOTIFY_SEARCH_URL,
                params={"q": query, "type": "track", "limit": SEARCH_LIMIT},
                headers={"Authorization": f"Bearer {token.get('access_token')}"},
            )
        except RetryableError as e:
            raise MusicSearchError(str(e), e.status_code or 500)
        if resp.status_code != 200:
            raise MusicSearchError(_error_message(resp, "Spotify search failed"), resp.status_code)

        items = (resp.json().get("tracks") or {}).get("items") or []
        tracks = [_spotify_track(item) for item in items]
        logger.info("Spotify search completed", extra={"query": query, "results": len(tracks)})
        return tracks

    async def search_youtube(self, query: Optional[str]) -> List[Track]:
        api_key = await self.credentials.get(YOUTUBE_API_KEY)
        if not api_key:
            raise MusicSearchError("YouTube API key not configured", 400)
        if not query:
            raise MusicSearchError("Query is required", 400)

        try:
            resp = await self._send(
                "GET", YOUTUBE_SEARCH_URL,
                params={
                    "part": "snippet",
                    "type": "video",
                    "q": query,
                    "key": api_key,
                    "maxResults": SEARCH_LIMIT,
                },
            )
        except RetryableError as e:
            raise MusicSearchError(str(e), e.status_code or 500)
        if resp.status_code != 200:
            raise MusicSearchError(_error_message(resp, "YouTube search failed"), resp.status_code)

        tracks = [_youtube_track(item) for item in resp.json().get("items") or []]
        logger.info("YouTube search completed", extra={"query": query, "results": len(tracks)})
        return tracks

    async def search(self, query: Optional[str], provider: MusicProvider) -> List[Track]:
        if provider == MusicProvider.YOUTUBE:
            return await self.search_youtube(query)
        return await self.search_spotify(query)

    async def get_artist_genres(self, artists: Optional[List[str]]) -> Dict[str, str]:
        """First Spotify genre per artist. Soft: returns {} when unavailable."""
        if not artists:
            return {}
        creds = await self._spotify_credentials()
        client_id, client_secret = creds[SPOTIFY_CLIENT_ID], creds[SPOTIFY_CLIENT_SECRET]
        if not client_id or not client_secret:
            return {}
        try:
            token = await self._request_token(client_id, client_secret)
        except MusicSearchError as e:
            logger.warning(f"Genre lookup skipped, no Spotify token: {e.message}")
            return {}

        genres: Dict[str, str] = {}
        for name in list(dict.fromkeys(artists))[:MAX_GENRE_ARTISTS]:
            try:
                resp = await self._send(
                    "GET", SPOTIFY_SEARCH_URL,
                    params={"q": f"artist:{name}", "type": "artist", "limit": 1},
                    headers={"Authorization": f"Bearer {token.get('access_token')}"},
                )
            except RetryableError as e:
                logger.warning(f"Genre lookup failed for {name}: {e}")
                continue
            if resp.status_code != 200:
                continue
            found = ((resp.json().get("artists") or {}).get("items") or [None])[0]
            found_genres = (found or {}).get("genres") or []
            genres[name] = found_genres[0] if found_genres else UNKNOWN_GENRE
        return genres
