"""
Classroom API Client

Read-only aiohttp client for the classroom REST API. It lists a learner's
active courses, their course work and the learner's own submissions. Access
tokens come from an injected provider; obtaining and refreshing them is the
provider's business.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from questledger.common.exceptions import ClassroomAPIError
from questledger.common.logger import app_logger

# Set up logging
logger = app_logger.getChild("classroom.client")

# Returns a bearer token for the given learner id
TokenProvider = Callable[[str], Awaitable[str]]

DEFAULT_BASE_URL = "https://classroom.googleapis.com/v1"


class ClassroomClient:
    """Thin async wrapper over the classroom course, course work and submission endpoints."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = 15,
        max_retries: int = 2,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: API root, without trailing slash
            timeout: Total timeout per request in seconds
            max_retries: Retries for server errors and timeouts
            session: Shared aiohttp session; one is created lazily when omitted
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._session = session
        self._owns_session = session is None
        self._initialize_lock = asyncio.Lock()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is not None:
            return self._session

        async with self._initialize_lock:
            if self._session is None:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> 'ClassroomClient':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _get(self, path: str, token: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET a JSON resource, retrying server errors and timeouts with backoff.

        Raises:
            ClassroomAPIError: On a client error or when retries run out
        """
        session = await self._ensure_session()
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {token}"}

        for attempt in range(self.max_retries + 1):
            try:
                async with session.get(url, params=params, headers=headers) as response:
                    if response.status == 200:
                        return await response.json()

                    error_text = await response.text()
                    if response.status < 500 and response.status != 429:
                        raise ClassroomAPIError(f"{path} returned {response.status}: {error_text}", response.status)

                    logger.warning(f"Classroom API error: {response.status} on {path}")
                    if attempt == self.max_retries:
                        raise ClassroomAPIError(
                            f"{path} failed after {attempt + 1} attempts: {error_text}", response.status
                        )
            except (asyncio.TimeoutError, aiohttp.ClientConnectionError) as e:
                if attempt == self.max_retries:
                    raise ClassroomAPIError(f"{path} request failed: {e}", original_exception=e)
                logger.info(f"Request to {path} failed ({e}), retry {attempt + 1}/{self.max_retries}")

            await asyncio.sleep(2 ** attempt)

        raise ClassroomAPIError(f"{path} failed")

    async def _get_paged(self, path: str, token: str, key: str,
                         params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        params = dict(params or {})
        while True:
            data = await self._get(path, token, params)
            items.extend(data.get(key) or [])
            next_page = data.get("nextPageToken")
            if not next_page:
                return items
            params["pageToken"] = next_page

    async def list_courses(self, token: str) -> List[Dict[str, Any]]:
        """List the learner's active courses."""
        return await self._get_paged("/courses", token, "courses", {"courseStates": "ACTIVE"})

    async def list_course_work(self, token: str, course_id: str) -> List[Dict[str, Any]]:
        """List the course work (assignments and questions) of a course."""
        return await self._get_paged(f"/courses/{course_id}/courseWork", token, "courseWork")

    async def list_my_submissions(self, token: str, course_id: str, course_work_id: str) -> List[Dict[str, Any]]:
        """
        List the learner's own submissions for one piece of course work.

        Course work the learner cannot see yields no submissions.
        """
        try:
            return await self._get_paged(
                f"/courses/{course_id}/courseWork/{course_work_id}/studentSubmissions",
                token,
                "studentSubmissions",
                {"userId": "me"},
            )
        except ClassroomAPIError as e:
            if e.status in (403, 404):
                return []
            raise
