"""
TMDB movie catalog client
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from showtime.core.config import settings
from showtime.services.errors import ExternalLookupError

logger = logging.getLogger(__name__)


class TMDBCatalog:
    """Fetches movie details and credits from The Movie Database"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.api_key = api_key or settings.TMDB_API_KEY
        self.base_url = (base_url or settings.TMDB_BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds or settings.TMDB_TIMEOUT_SECONDS)

    async def fetch_movie(self, movie_id: str) -> Dict[str, Any]:
        """Movie record fields for `movie_id`; details and credits are fetched concurrently"""
        headers = {"Authorization": f"Bearer {self.api_key}"}
        async with aiohttp.ClientSession(headers=headers, timeout=self.timeout) as session:
            details, credits = await asyncio.gather(
                self._get_json(session, f"/movie/{movie_id}"),
                self._get_json(session, f"/movie/{movie_id}/credits"),
            )

        if not isinstance(details, dict) or not details.get("title"):
            logger.error(f"Catalog returned no title for movie {movie_id}")
            raise ExternalLookupError(f"Catalog returned no title for movie {movie_id}")
        if not isinstance(credits, dict):
            credits = {}

        return {
            "id": str(movie_id),
            "title": details["title"],
            "overview": details.get("overview"),
            "poster_path": details.get("poster_path"),
            "backdrop_path": details.get("backdrop_path"),
            "genres": details.get("genres") or [],
            "casts": credits.get("cast") or [],
            "release_date": details.get("release_date"),
            "original_language": details.get("original_language"),
            "tagline": details.get("tagline") or "",
            "vote_average": details.get("vote_average"),
            "runtime": details.get("runtime"),
        }

    async def _get_json(self, session: aiohttp.ClientSession, path: str) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with session.get(url) as response:
                if response.status == 404:
                    raise ExternalLookupError(f"Movie not found in catalog: {path}", status_code=404)
                response.raise_for_status()
                return await response.json()
        except aiohttp.ClientError as e:
            logger.error(f"Catalog request failed: {url}: {e}")
            raise ExternalLookupError(f"Catalog request failed: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error(f"Catalog request timed out: {url}")
            raise ExternalLookupError("Catalog request timed out") from e
