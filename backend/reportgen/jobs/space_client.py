"""HTTP client for the remote report backend (a Hugging Face Space).

The Space accepts a multipart POST of ``files`` plus a ``prompt`` field at
its base URL and answers with one of:

- a PDF document (``content-type: application/pdf``),
- JSON carrying a ``result_url`` to download the PDF from,
- JSON carrying a ``job_id`` to poll at ``<base>/status/<job_id>``.

Usage:
    client = SpaceClient("https://example.hf.space/run/predict", token="hf_...")
    response = await client.submit(["/jobs/abc/data.csv"], prompt="Make a report")
"""
import logging
import mimetypes
import os
import re
from typing import Dict, List, Optional, Sequence
from urllib.parse import quote, urlsplit

import httpx
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()


class SpaceClient:
    """Thin async wrapper over ``httpx.AsyncClient`` for the remote backend.

    Attributes:
        base_url: Submission URL of the Space (may end in ``/run/...``).
        token: Optional bearer token sent with Space requests.
        http: Shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ) -> None:
        self.base_url = base_url
        self.token = token
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    @property
    def root_url(self) -> str:
        """Base URL with any ``/run...`` suffix and trailing slash removed."""
        return re.sub(r"/run.*$", "", self.base_url).rstrip("/")

    @property
    def host(self) -> str:
        return urlsplit(self.base_url).hostname or ""

    def url(self, path: str) -> str:
        return f"{self.root_url}/{path.lstrip('/')}"

    def poll_url(self, remote_id: str) -> str:
        return self.url(f"/status/{quote(str(remote_id), safe='')}")

    @property
    def headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    async def submit(self, paths: Sequence[str], prompt: str) -> httpx.Response:
        """POST the job files and prompt to the Space.

        Raises:
            httpx.HTTPStatusError: If the Space answers with a non-2xx status.
        """
        files: List[tuple] = []
        for path in paths:
            name = os.path.basename(path)
            mime = mimetypes.guess_type(name)[0] or "application/octet-stream"
            files.append(("files", (name, await run_in_threadpool(_read_bytes, path), mime)))

        logger.info(f"Submitting {len(files)} file(s) to {self.base_url}")
        response = await self.http.post(
            self.base_url,
            data={"prompt": prompt},
            files=files,
            headers=self.headers,
        )
        response.raise_for_status()
        return response

    async def status(self, remote_id: str) -> Optional[dict]:
        """Fetch the remote job status. Returns None if the body is not JSON."""
        response = await self.http.get(self.poll_url(remote_id), headers=self.headers)
        try:
            body = response.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    async def fetch(self, url: str, authenticated: bool = False) -> bytes:
        """Download a result document.

        Raises:
            httpx.HTTPStatusError: If the download answers with a non-2xx status.
        """
        response = await self.http.get(url, headers=self.headers if authenticated else None)
        response.raise_for_status()
        return response.content

    async def close(self) -> None:
        if self._owns_http:
            await self.http.aclose()


_space_client: Optional[SpaceClient] = None


def get_space_client() -> Optional[SpaceClient]:
    """Get the global Space client, or None when no remote is configured."""
    return _space_client


def set_space_client(client: Optional[SpaceClient]) -> None:
    """Set the global Space client instance."""
    global _space_client
    _space_client = client
