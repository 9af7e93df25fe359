"""
YouTube Data API search client (videos only).
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from agentkit.utilities.retry import http_retry

logger = logging.getLogger(__name__)

YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"


class YouTubeClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        if api_key is None:
            from agentkit.config import get_settings
            api_key = get_settings().YOUTUBE_API_KEY
        self.api_key = api_key
        self._http_client = http_client
        self.timeout = timeout

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)

    @http_retry()
    async def _get(self, client: httpx.AsyncClient, params: Dict[str, Any]) -> Any:
        response = await client.get(YOUTUBE_SEARCH_URL, params=params)
        response.raise_for_status()
        return response.json()

    async def search_videos(self, query: str, max_results: int = 6) -> List[Dict[str, str]]:
        """
        Search videos; returns ``[{title, videoId, url, channel, thumbnail}]``.

        Returns an empty list when no API key is configured.
        """
        if not self.has_credentials:
            logger.info("YouTube API key not configured; skipping video search")
            return []

        params = {
            "part": "snippet",
            "q": query,
            "type": "video",
            "maxResults": max_results,
            "key": self.api_key,
        }
        if self._http_client is not None:
            data = await self._get(self._http_client, params)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                data = await self._get(client, params)

        videos = []
        for item in data.get("items") or []:
            video_id = (item.get("id") or {}).get("videoId")
            if not video_id:
                continue
            snippet = item.get("snippet") or {}
            thumbnails = snippet.get("thumbnails") or {}
            thumb = (thumbnails.get("high") or thumbnails.get("medium") or thumbnails.get("default") or {}).get("url", "")
            videos.append({
                "title": snippet.get("title", ""),
                "videoId": video_id,
                "url": f"https://www.youtube.com/watch?v={video_id}",
                "channel": snippet.get("channelTitle", ""),
                "thumbnail": thumb,
            })
        return videos
