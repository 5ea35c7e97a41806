from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from .db import settings
from .models import MovieDetail, MovieSummary
from .utils import MetadataUnavailable

logger = logging.getLogger(__name__)

# TMDB genre ids used by the mood / genre pickers
GENRE_IDS = {
    "comedy": 35,
    "thriller": 53,
    "drama": 18,
}


def _summary(raw: Dict[str, Any]) -> MovieSummary:
    return MovieSummary(
        id=raw["id"],
        title=raw.get("title") or raw.get("original_title") or "Untitled",
        overview=raw.get("overview") or None,
        release_date=raw.get("release_date") or None,
        poster_path=raw.get("poster_path"),
        vote_average=raw.get("vote_average"),
    )


class TMDBClient:
    """Thin async wrapper over the TMDB v3 REST API."""

    def __init__(self, api_key: str, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get_sync(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            res = self.session.get(
                f"{self.base_url}{path}",
                params={"api_key": self.api_key, **params},
                timeout=self.timeout,
            )
            res.raise_for_status()
            return res.json()
        except (requests.RequestException, ValueError) as exc:
            raise MetadataUnavailable(f"TMDB request {path} failed") from exc

    async def _get(self, path: str, **params: Any) -> Dict[str, Any]:
        return await asyncio.to_thread(self._get_sync, path, params)

    async def search_movie(self, query: str) -> Optional[MovieSummary]:
        query = (query or "").strip()
        if not query:
            return None
        data = await self._get("/search/movie", query=query)
        results = data.get("results") or []
        return _summary(results[0]) if results else None

    async def movie_details(self, movie_id: int) -> MovieDetail:
        data = await self._get(f"/movie/{movie_id}", append_to_response="credits")
        summary = _summary(data)
        cast = (data.get("credits") or {}).get("cast") or []
        return MovieDetail(
            **summary.model_dump(),
            genres=[g["name"] for g in data.get("genres") or [] if g.get("name")],
            cast=[c["name"] for c in sorted(cast, key=lambda c: c.get("order", 0)) if c.get("name")],
        )

    async def similar_movies(self, movie_id: int) -> List[MovieSummary]:
        data = await self._get(f"/movie/{movie_id}/similar")
        return [_summary(m) for m in data.get("results") or []]

    async def upcoming(self) -> List[MovieSummary]:
        data = await self._get("/movie/upcoming", language="en-US")
        return [_summary(m) for m in data.get("results") or []]

    async def discover(self, genre_id: Optional[int] = None) -> List[MovieSummary]:
        params: Dict[str, Any] = {"sort_by": "popularity.desc"}
        if genre_id is not None:
            params["with_genres"] = genre_id
        data = await self._get("/discover/movie", **params)
        return [_summary(m) for m in data.get("results") or []]

    def poster_url(self, movie: MovieSummary) -> Optional[str]:
        if not movie.poster_path:
            return None
        return f"{settings.TMDB_IMAGE_BASE}{movie.poster_path}"


tmdb = TMDBClient(settings.TMDB_API_KEY, settings.TMDB_BASE_URL, settings.HTTP_TIMEOUT)
