"""
Nonprofit directory client (Every.org partners API).

Three operations: search by term, browse by cause, and detail lookup by
identifier. Every call has a bounded timeout capped by the request deadline.
Rate-limit, server, timeout and network errors are retried with exponential
backoff; not-found and other client errors fail immediately.

API Docs: https://docs.every.org/docs/endpoints/nonprofit-search
"""

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from .. import constants
from ..errors import (
    DeadlineExceeded,
    ProviderClientError,
    ProviderError,
    ProviderNetworkError,
    ProviderNotFound,
    ProviderRateLimited,
    ProviderResponseError,
    ProviderServerError,
    ProviderTimeout,
)
from ..recommendations.models import Candidate, Location, NonprofitDetails, Provenance
from ..utils.deadline import Deadline
from ..utils.ein_utils import ein_to_digits, normalize_ein, normalize_slug, resolve_identifier
from ..utils.logger import PipelineLogger
from ..utils.ntee_mapper import get_ntee_description
from ..utils.rate_limiter import Throttle


@dataclass
class RetryPolicy:
    """
    Exponential backoff for retryable provider errors.

    Defaults give 1 initial call + 2 retries, waiting 250ms then 1000ms.
    """

    max_attempts: int = constants.RETRY_MAX_ATTEMPTS
    base_delay: float = constants.RETRY_BASE_DELAY_SECONDS
    multiplier: float = constants.RETRY_BACKOFF_MULTIPLIER
    max_delay: float = constants.RETRY_MAX_DELAY_SECONDS
    jitter: float = 0.0

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry N (1-based)."""
        delay = min(self.base_delay * (self.multiplier ** (retry_number - 1)), self.max_delay)
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return delay


def parse_location(address: Optional[str]) -> Optional[Location]:
    """
    Split a directory address into city/state/country.

    The last comma part is the country, the one before it the state, and the
    first part the city when there are three or more parts.

    Examples:
        >>> parse_location("Istanbul, Marmara, Turkey")
        Location(city='Istanbul', state='Marmara', country='Turkey')
        >>> parse_location("Turkey")
        Location(city=None, state=None, country='Turkey')
    """
    if not address or not address.strip():
        return None

    parts = [p.strip() for p in address.split(",") if p.strip()]
    if not parts:
        return None

    return Location(
        country=parts[-1],
        state=parts[-2] if len(parts) > 1 else None,
        city=parts[0] if len(parts) > 2 else None,
    )


def build_profile_url(
    slug: Optional[str], ein: Optional[str] = None, base_url: str = constants.PROFILE_BASE_URL
) -> Optional[str]:
    """Public profile link: {base_url}/{slug}, or the EIN digits when there is no slug."""
    key = slug or ein_to_digits(ein)
    if not key:
        return None
    return f"{base_url.rstrip('/')}/{quote(key, safe='')}"


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _string_list(values: Any) -> List[str]:
    """Directory lists hold plain strings or tag objects ({"tagName": ...})."""
    if not isinstance(values, list):
        return []
    result = []
    for value in values:
        if isinstance(value, dict):
            value = value.get("tagName") or value.get("name") or value.get("title")
        text = _text(value)
        if text and text not in result:
            result.append(text)
    return result


class DirectoryClient:
    """
    Client for the nonprofit directory.

    Implements the three directory operations used by the pipeline:
    - search(): fuzzy term search, optionally filtered by causes
    - browse(): organizations tagged with a cause
    - get_details(): full record for one organization
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = constants.DIRECTORY_BASE_URL,
        timeout: float = constants.DEFAULT_REQUEST_TIMEOUT_SECONDS,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
        throttle: Optional[Throttle] = None,
        logger: Optional[PipelineLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
        profile_base_url: str = constants.PROFILE_BASE_URL,
    ):
        """
        Initialize the directory client.

        Args:
            api_key: Directory public API key
            base_url: API base URL
            timeout: Per-call timeout in seconds
            retry_policy: Backoff policy for retryable errors
            session: requests.Session to use (tests pass a fake)
            throttle: Optional per-endpoint request spacing
            logger: Logger instance
            sleep: Sleep function used for backoff (tests pass a no-op)
            profile_base_url: Base for public profile links
        """
        self.api_key = api_key or ""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.session = session or requests.Session()
        self.throttle = throttle or Throttle(0.0)
        self.logger = logger
        self._sleep = sleep
        self.profile_base_url = profile_base_url.rstrip("/")

        if not self.api_key and self.logger:
            self.logger.warning(f"{constants.API_KEY_ENV_VAR} is not set; directory calls will likely be rejected")

    @classmethod
    def from_config(cls, config, logger: Optional[PipelineLogger] = None, **kwargs) -> "DirectoryClient":
        """Build a client from an EngineConfig."""
        return cls(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.request_timeout,
            retry_policy=RetryPolicy(
                max_attempts=config.retry_max_attempts,
                base_delay=config.retry_base_delay,
                multiplier=config.retry_multiplier,
                max_delay=config.retry_max_delay,
            ),
            throttle=Throttle(config.min_request_interval),
            logger=logger,
            profile_base_url=config.profile_base_url,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def search(
        self,
        term: str,
        causes: Optional[List[str]] = None,
        take: int = constants.RESULTS_PER_QUERY,
        deadline: Optional[Deadline] = None,
    ) -> List[Candidate]:
        """
        Search organizations by free-text term.

        Args:
            term: Search term (fuzzy/typeahead matching on the provider side)
            causes: Optional cause filter; omitted from the query when empty
            take: Page size
            deadline: Request deadline

        Returns:
            Candidates in provider order
        """
        term = (term or "").strip()
        if not term:
            raise ValueError("Search term must not be empty")

        params: Dict[str, Any] = {"take": take}
        if causes:
            params["causes"] = ",".join(causes)

        data = self._request("search", f"/search/{quote(term, safe='')}", params, deadline, query=term)
        return self._to_candidates(data, Provenance(source="search", query_used=term))

    def browse(
        self,
        cause: str,
        take: int = constants.RESULTS_PER_QUERY,
        page: int = 1,
        deadline: Optional[Deadline] = None,
    ) -> List[Candidate]:
        """Organizations tagged with a cause, in provider order."""
        cause = (cause or "").strip()
        if not cause:
            raise ValueError("Cause must not be empty")

        params = {"take": take, "page": page}
        data = self._request("browse", f"/browse/{quote(cause, safe='')}", params, deadline, query=cause)
        return self._to_candidates(data, Provenance(source="browse", query_used=cause))

    def get_details(self, identifier: str, deadline: Optional[Deadline] = None) -> NonprofitDetails:
        """
        Full record for one organization.

        Args:
            identifier: Slug or EIN

        Raises:
            ProviderNotFound: Unknown identifier or empty detail payload
        """
        identifier = (identifier or "").strip()
        if not identifier:
            raise ValueError("Identifier must not be empty")

        lookup = ein_to_digits(identifier) or identifier
        data = self._request("details", f"/nonprofit/{quote(lookup, safe='')}", {}, deadline, query=identifier)

        payload = data.get("data") if isinstance(data.get("data"), dict) else data
        record = payload.get("nonprofit")
        if not isinstance(record, dict):
            raise ProviderNotFound(f"No detail record for {identifier}", status_code=200)

        details = self.record_to_details(record, tags=payload.get("nonprofitTags"))
        if details is None:
            raise ProviderResponseError(f"Detail record for {identifier} has no name or identifier")
        return details

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        endpoint: str,
        path: str,
        params: Dict[str, Any],
        deadline: Optional[Deadline],
        query: str,
    ) -> Dict[str, Any]:
        """GET with retries, backoff and deadline handling. Returns the JSON object."""
        deadline = deadline or Deadline.never()
        url = f"{self.base_url}{path}"
        params = {"apiKey": self.api_key, **params}
        policy = self.retry_policy
        last_error: Optional[ProviderError] = None

        for attempt in range(1, max(1, policy.max_attempts) + 1):
            if deadline.expired():
                if last_error is not None:
                    raise last_error
                raise DeadlineExceeded(f"Deadline passed before {endpoint} '{query}'")

            self.throttle.wait(endpoint, max_wait=deadline.remaining())

            try:
                data = self._send(url, params, timeout=deadline.cap(self.timeout))
                if self.logger:
                    self.logger.log_provider_call(endpoint, query, True, attempt=attempt)
                return data

            except ProviderError as e:
                last_error = e
                if not e.retryable or attempt >= policy.max_attempts:
                    if self.logger:
                        self.logger.log_provider_call(endpoint, query, False, error=str(e), attempt=attempt)
                    raise

                delay = policy.delay_for(attempt)
                remaining = deadline.remaining()
                if remaining is not None:
                    delay = min(delay, remaining)

                if self.logger:
                    retry_after = getattr(e, "retry_after", None)
                    self.logger.warning(
                        f"Retrying directory {endpoint}",
                        query=query,
                        attempt=attempt + 1,
                        max_attempts=policy.max_attempts,
                        delay_ms=int(delay * 1000),
                        error=str(e),
                        **({"retry_after": retry_after} if retry_after else {}),
                    )
                self._sleep(delay)

        raise last_error  # pragma: no cover - loop always returns or raises

    def _send(self, url: str, params: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        """One HTTP GET, with status codes mapped onto the provider error taxonomy."""
        try:
            response = self.session.get(
                url,
                params=params,
                timeout=timeout,
                headers={"Accept": "application/json"},
            )
        except requests.Timeout as e:
            raise ProviderTimeout(f"Request timeout after {timeout:.2f}s", url=url) from e
        except requests.RequestException as e:
            raise ProviderNetworkError(f"Request failed: {e}", url=url) from e

        status = response.status_code

        if status == 404:
            raise ProviderNotFound("Not found (404)", status_code=404, url=url)
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise ProviderRateLimited("Rate limited (429)", retry_after=retry_after, url=url)
        if status >= 500:
            raise ProviderServerError(f"HTTP {status}", status_code=status, url=url)
        if status >= 400:
            raise ProviderClientError(f"HTTP {status}", status_code=status, url=url)
        if status != 200:
            raise ProviderResponseError(f"Unexpected HTTP {status}", status_code=status, url=url)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError("Response is not valid JSON", status_code=status, url=url) from e

        if not isinstance(data, dict):
            raise ProviderResponseError("Response JSON is not an object", status_code=status, url=url)
        return data

    # ------------------------------------------------------------------
    # Record transformation
    # ------------------------------------------------------------------

    def _to_candidates(self, data: Dict[str, Any], provenance: Provenance) -> List[Candidate]:
        records = data.get("nonprofits") or []
        if not isinstance(records, list):
            raise ProviderResponseError("'nonprofits' is not a list")

        candidates = []
        skipped = 0
        for record in records:
            candidate = self.record_to_candidate(record, provenance) if isinstance(record, dict) else None
            if candidate is None:
                skipped += 1
                continue
            candidates.append(candidate)

        if skipped and self.logger:
            self.logger.debug("Skipped directory records without name or identifier", skipped=skipped)
        return candidates

    @staticmethod
    def record_to_candidate(record: Dict[str, Any], provenance: Provenance) -> Optional[Candidate]:
        """
        Directory JSON -> Candidate.

        Returns None for records lacking a name or both slug and EIN.
        """
        slug = normalize_slug(record.get("slug"))
        ein = normalize_ein(record.get("ein"))
        identifier = resolve_identifier(ein, slug)
        name = _text(record.get("name"))
        if not identifier or not name:
            return None

        ntee_code = _text(record.get("nteeCode"))
        is_disbursable = record.get("isDisbursable")
        flexibility = record.get("flexibilityScore")

        return Candidate(
            identifier=identifier,
            slug=slug,
            ein=ein,
            name=name,
            description=_text(record.get("description")),
            website_url=_text(record.get("websiteUrl")),
            location_text=_text(record.get("locationAddress")),
            category_text=_text(record.get("primaryCategory")),
            ntee_code=ntee_code,
            ntee_meaning=_text(record.get("nteeCodeMeaning")) or get_ntee_description(ntee_code),
            causes=_string_list(record.get("causes")),
            tags=_string_list(record.get("tags")),
            logo_url=_text(record.get("logoUrl")),
            is_disbursable=is_disbursable if isinstance(is_disbursable, bool) else None,
            flexibility_score=float(flexibility) if isinstance(flexibility, (int, float)) else None,
            provenance=provenance,
            discovered_by=[f"{provenance.source}:{provenance.query_used}"],
        )

    def record_to_details(self, record: Dict[str, Any], tags: Any = None) -> Optional[NonprofitDetails]:
        """Directory detail JSON -> NonprofitDetails."""
        slug = normalize_slug(record.get("slug") or record.get("primarySlug"))
        ein = normalize_ein(record.get("ein"))
        identifier = resolve_identifier(ein, slug)
        name = _text(record.get("name"))
        if not identifier or not name:
            return None

        location_text = _text(record.get("locationAddress"))
        categories = _string_list(record.get("categories")) or _string_list(tags)
        is_disbursable = record.get("isDisbursable")

        return NonprofitDetails(
            identifier=identifier,
            slug=slug,
            ein=ein,
            name=name,
            description=_text(record.get("description")),
            long_description=_text(record.get("descriptionLong")),
            website_url=_text(record.get("websiteUrl")),
            logo_url=_text(record.get("logoUrl")),
            cover_image_url=_text(record.get("coverImageUrl")),
            location_text=location_text,
            location=parse_location(location_text),
            categories=categories,
            is_disbursable=is_disbursable if isinstance(is_disbursable, bool) else None,
            profile_url=self.profile_url(slug, ein),
        )

    def profile_url(self, slug: Optional[str], ein: Optional[str] = None) -> Optional[str]:
        return build_profile_url(slug, ein, self.profile_base_url)
