"""Tests for the Spotify / YouTube search facade"""
import pytest
import httpx

from eventsnaps.credentials import CredentialResolver
from eventsnaps.exceptions import MusicSearchError
from eventsnaps.models import MusicProvider
from eventsnaps.music import MusicSearchClient, SPOTIFY_TOKEN_URL

TOKEN = {"access_token": "spotify-token", "token_type": "Bearer", "expires_in": 3600}

SPOTIFY_TRACKS = {
    "tracks": {
        "items": [{
            "id": "4uLU6hMCjMI75M1A2tKUQC",
            "name": "Never Gonna Give You Up",
            "artists": [{"name": "Rick Astley"}],
            "album": {"images": [{"url": "https://i.scdn.co/large.jpg"}, {"url": "https://i.scdn.co/small.jpg"}]},
            "preview_url": "https://p.scdn.co/preview.mp3",
        }, {
            "id": "2",
            "name": "Under Pressure",
            "artists": [{"name": "Queen"}, {"name": "David Bowie"}],
            "album": {"images": []},
            "preview_url": None,
        }]
    }
}

YOUTUBE_VIDEOS = {
    "items": [{
        "id": {"videoId": "dQw4w9WgXcQ"},
        "snippet": {
            "title": "Rick Astley - Never Gonna Give You Up",
            "channelTitle": "RickAstleyVEVO",
            "thumbnails": {"default": {"url": "https://i.ytimg.com/default.jpg"},
                           "high": {"url": "https://i.ytimg.com/high.jpg"}},
        },
    }]
}


def make_client(settings, handler, **credentials):
    settings = settings.model_copy(update=credentials)
    return MusicSearchClient(
        CredentialResolver(None, settings),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        max_retries=0,
    )


def spotify_handler(search_response=None, token_status=200, requests=None):
    def handler(request: httpx.Request):
        if requests is not None:
            requests.append(request)
        if str(request.url) == SPOTIFY_TOKEN_URL:
            if token_status != 200:
                return httpx.Response(token_status, json={"error": "invalid_client",
                                                          "error_description": "Invalid client"})
            return httpx.Response(200, json=TOKEN)
        return search_response or httpx.Response(200, json=SPOTIFY_TRACKS)
    return handler


SPOTIFY_CREDS = {"spotify_client_id": "client-id", "spotify_client_secret": "client-secret"}


class TestSpotify:
    """Tests for Spotify search"""

    async def test_search_normalizes_tracks(self, settings):
        requests = []
        client = make_client(settings, spotify_handler(requests=requests), **SPOTIFY_CREDS)

        tracks = await client.search_spotify("rick astley")

        assert len(tracks) == 2
        assert tracks[0].id == "4uLU6hMCjMI75M1A2tKUQC"
        assert tracks[0].artist == "Rick Astley"
        assert tracks[0].album_art == "https://i.scdn.co/large.jpg"
        assert tracks[0].provider == MusicProvider.SPOTIFY
        assert tracks[1].artist == "Queen, David Bowie"
        assert tracks[1].album_art is None

        token_request, search_request = requests
        assert token_request.headers["Authorization"].startswith("Basic ")
        assert b"grant_type=client_credentials" in token_request.content
        assert search_request.headers["Authorization"] == "Bearer spotify-token"
        assert search_request.url.params["type"] == "track"
        assert search_request.url.params["limit"] == "10"

    async def test_missing_credentials(self, settings):
        client = make_client(settings, spotify_handler())
        with pytest.raises(MusicSearchError) as exc_info:
            await client.search_spotify("anything")
        assert exc_info.value.status_code == 400
        assert "not configured" in exc_info.value.message

    async def test_missing_query(self, settings):
        client = make_client(settings, spotify_handler(), **SPOTIFY_CREDS)
        with pytest.raises(MusicSearchError) as exc_info:
            await client.search_spotify("")
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Query is required"

    async def test_token_failure(self, settings):
        client = make_client(settings, spotify_handler(token_status=401), **SPOTIFY_CREDS)
        with pytest.raises(MusicSearchError) as exc_info:
            await client.get_spotify_token()
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Invalid client"

    async def test_upstream_status_passed_through(self, settings):
        handler = spotify_handler(httpx.Response(403, json={"error": {"status": 403, "message": "Forbidden"}}))
        client = make_client(settings, handler, **SPOTIFY_CREDS)
        with pytest.raises(MusicSearchError) as exc_info:
            await client.search_spotify("song")
        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "Forbidden"

    async def test_upstream_server_error(self, settings):
        client = make_client(settings, spotify_handler(httpx.Response(502, text="bad gateway")), **SPOTIFY_CREDS)
        with pytest.raises(MusicSearchError) as exc_info:
            await client.search_spotify("song")
        assert exc_info.value.status_code == 502

    async def test_get_token(self, settings):
        client = make_client(settings, spotify_handler(), **SPOTIFY_CREDS)
        assert await client.get_spotify_token() == TOKEN


class TestYouTube:
    """Tests for YouTube search"""

    async def test_search_normalizes_videos(self, settings):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=YOUTUBE_VIDEOS)

        client = make_client(settings, handler, youtube_api_key="yt-key")
        tracks = await client.search("never gonna", MusicProvider.YOUTUBE)

        assert len(tracks) == 1
        assert tracks[0].id == "dQw4w9WgXcQ"
        assert tracks[0].artist == "RickAstleyVEVO"
        assert tracks[0].album_art == "https://i.ytimg.com/high.jpg"
        assert tracks[0].preview_url is None
        assert tracks[0].provider == MusicProvider.YOUTUBE
        params = requests[0].url.params
        assert params["key"] == "yt-key"
        assert params["type"] == "video"
        assert params["maxResults"] == "10"

    async def test_missing_key(self, settings):
        client = make_client(settings, lambda request: httpx.Response(200, json=YOUTUBE_VIDEOS))
        with pytest.raises(MusicSearchError) as exc_info:
            await client.search_youtube("song")
        assert exc_info.value.status_code == 400

    async def test_quota_error(self, settings):
        body = {"error": {"code": 403, "message": "quotaExceeded"}}
        client = make_client(settings, lambda request: httpx.Response(403, json=body), youtube_api_key="k")
        with pytest.raises(MusicSearchError) as exc_info:
            await client.search_youtube("song")
        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "quotaExceeded"


class TestArtistGenres:
    """Tests for genre lookup"""

    async def test_genres_deduplicated_and_capped(self, settings):
        searched = []

        def handler(request: httpx.Request):
            if str(request.url) == SPOTIFY_TOKEN_URL:
                return httpx.Response(200, json=TOKEN)
            searched.append(request.url.params["q"])
            name = request.url.params["q"].split(":", 1)[1]
            genres = [] if name == "Nobody" else [f"{name.lower()} pop"]
            return httpx.Response(200, json={"artists": {"items": [{"name": name, "genres": genres}]}})

        client = make_client(settings, handler, **SPOTIFY_CREDS)
        artists = ["A", "B", "A", "Nobody", "C", "D", "E", "F"]
        genres = await client.get_artist_genres(artists)

        assert searched == ["artist:A", "artist:B", "artist:Nobody", "artist:C", "artist:D"]
        assert genres == {"A": "a pop", "B": "b pop", "Nobody": "unknown", "C": "c pop", "D": "d pop"}

    async def test_soft_without_credentials(self, settings):
        def handler(request):
            raise AssertionError("no request expected")

        client = make_client(settings, handler)
        assert await client.get_artist_genres(["Queen"]) == {}
        assert await client.get_artist_genres([]) == {}

    async def test_soft_when_token_fails(self, settings):
        client = make_client(settings, spotify_handler(token_status=400), **SPOTIFY_CREDS)
        assert await client.get_artist_genres(["Queen"]) == {}
