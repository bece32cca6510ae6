"""First-success-wins calls over an ordered list of candidate endpoints.

The remote backend's exact routes are not known in advance, so each
operation is configured with a list of paths. They are tried in order and
the first 2xx answer wins; a transport error or non-2xx status moves on to
the next candidate. Running out of candidates is a hard failure
(``EndpointsExhausted``, 502).

Usage:
    result = await try_candidates(
        http, "GET", candidate_urls(root, ["/status/{job_id}"], job_id="abc")
    )
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence
from urllib.parse import quote

import httpx

from reportgen.errors import EndpointsExhausted

logger = logging.getLogger(__name__)


@dataclass
class CandidateResult:
    """The accepted endpoint and its decoded body."""
    endpoint: str
    status_code: int
    body: Any


def candidate_urls(root_url: str, paths: Sequence[str], **params: str) -> List[str]:
    """Join each path template to ``root_url``.

    Template parameters are URL-encoded.

    Examples:
        >>> candidate_urls("https://s.hf.space/", ["/status/{job_id}"], job_id="a b")
        ['https://s.hf.space/status/a%20b']
    """
    encoded = {name: quote(str(value), safe="") for name, value in params.items()}
    base = root_url.rstrip("/")
    return [f"{base}/{path.format(**encoded).lstrip('/')}" for path in paths]


def decode_body(response: httpx.Response) -> Any:
    """JSON body when the response is JSON, otherwise ``{"raw": text}``."""
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


async def try_candidates(
    http: httpx.AsyncClient,
    method: str,
    urls: Sequence[str],
    build_request: Optional[Callable[[], dict]] = None,
    message: str = "No remote endpoint accepted the request.",
) -> CandidateResult:
    """Call each URL in order until one answers with a 2xx status.

    Args:
        http: Client used for every attempt.
        method: HTTP method.
        urls: Candidate URLs, most preferred first.
        build_request: Returns fresh keyword arguments for ``http.request``
            on each attempt (multipart bodies cannot be reused).
        message: Error message when every candidate failed.

    Raises:
        EndpointsExhausted: If no candidate succeeded.
    """
    for url in urls:
        kwargs = build_request() if build_request else {}
        try:
            response = await http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"Candidate {method} {url} failed: {e}")
            continue

        if response.is_success:
            logger.info(f"Candidate {method} {url} accepted ({response.status_code})")
            return CandidateResult(url, response.status_code, decode_body(response))
        logger.debug(f"Candidate {method} {url} answered {response.status_code}")

    raise EndpointsExhausted(message, urls)
