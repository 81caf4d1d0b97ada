"""Resilient client for the campaign data service.

Every read goes through the same pipeline:

    CircuitBreaker
      -> DegradationController (full / reduced / minimal variants, cache)
        -> QuotaLimiter.check_quota
          -> retry_with_backoff
            -> HTTP request (httpx, bounded by a timeout)

Writes that only update remote metrics are fire-and-forget: their failures
are logged and swallowed.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from resilink import __version__

# Domain Layer Imports
from resilink.domain.events.resilience_events import EventHandler, SideEffectFailed, dispatch_event
from resilink.domain.exceptions import (
    ConfigurationError, ErrorKind, NonCriticalSideEffectError, QuotaExhaustedError,
    ResilienceError, TransientUpstreamError, UpstreamRequestError, UpstreamTimeoutError,
    is_retryable,
)
from resilink.domain.models.common import CacheKey, Criteria, Endpoint, HealthSnapshot, ResourceName
from resilink.domain.models.resilience import AsyncOperation, DegradationLevel, OperationSet

# Infrastructure Layer Imports
from resilink.infrastructure.cache.ttl_cache import DEFAULT_TTL_SECONDS
from resilink.infrastructure.resilience.backoff import BackoffPolicy, retry_with_backoff
from resilink.infrastructure.resilience.circuit_breaker import CircuitBreaker
from resilink.infrastructure.resilience.degradation import DegradationController
from resilink.infrastructure.resilience.quota_limiter import QuotaLimiter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0
READ_RESOURCE = ResourceName('d1_reads')
WRITE_RESOURCE = ResourceName('d1_writes')
MAX_ERROR_BODY_CHARS = 500


class DataServiceClient:
    """Client for the data service with breaker, degradation, quota and retry."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_S,
        degradation: Optional[DegradationController] = None,
        breaker: Optional[CircuitBreaker] = None,
        quota_limiter: Optional[QuotaLimiter] = None,
        backoff_policy: Optional[BackoffPolicy] = None,
        cache_ttl: float = DEFAULT_TTL_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
        event_handler: Optional[EventHandler] = None,
    ):
        """Initializes the client.

        Args:
            base_url: Root URL of the data service.
            api_key: Bearer token sent with every request.
            timeout: Per-request timeout in seconds.
            degradation: Process-wide degradation controller shared with other clients.
            breaker: Breaker for this upstream (a default one if None).
            quota_limiter: Limiter holding the data service quotas (defaults if None).
            backoff_policy: Retry policy for each network call.
            cache_ttl: Seconds successful results stay in the degradation cache.
            http_client: Preconfigured httpx client; created lazily if None.
            event_handler: Optional receiver for resilience events.
        """
        if not base_url:
            raise ConfigurationError("Data service base URL is required.")
        if timeout <= 0:
            raise ConfigurationError(f"Request timeout must be positive, got {timeout}")

        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.backoff_policy = backoff_policy or BackoffPolicy()
        self._event_handler = event_handler

        self.breaker = breaker or CircuitBreaker(name="data-service", event_handler=event_handler)
        self.quota_limiter = quota_limiter or QuotaLimiter(event_handler=event_handler)
        self.degradation = degradation or DegradationController(event_handler=event_handler)

        self._http_client = http_client
        self._owns_http_client = http_client is None

        if not api_key:
            logger.warning("No data service API key configured; requests will be unauthenticated.")
        logger.info(f"DataServiceClient initialized for {self.base_url} (timeout={timeout}s)")

    # --- Lifecycle ---

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            headers = {
                'Content-Type': 'application/json',
                'User-Agent': f'resilink/{__version__}',
            }
            if self.api_key:
                headers['Authorization'] = f'Bearer {self.api_key}'
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout),
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "DataServiceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # --- Raw network call ---

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        body = response.text[:MAX_ERROR_BODY_CHARS]
        message = f"HTTP {status}: {body}"
        if status == 429:
            if 'quota' in body.lower():
                raise QuotaExhaustedError(message)
            raise TransientUpstreamError(message, ErrorKind.RATE_LIMITED, status)
        if status == 503:
            raise TransientUpstreamError(message, ErrorKind.SERVICE_UNAVAILABLE, status)
        if status >= 500:
            raise TransientUpstreamError(message, ErrorKind.UPSTREAM_FAILURE, status)
        raise UpstreamRequestError(message, status)

    async def _request(self, endpoint: Endpoint, method: str = 'GET', payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Performs a single HTTP request and maps failures to typed errors."""
        client = self._get_http_client()
        logger.debug(f"{method} {endpoint}")
        try:
            # Bounds the whole exchange; httpx timeouts apply per phase only
            response = await asyncio.wait_for(client.request(method, endpoint, json=payload), self.timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise UpstreamTimeoutError(f"Request timeout after {self.timeout}s", timeout_s=self.timeout) from e
        except httpx.TransportError as e:
            raise TransientUpstreamError(f"Connection to data service failed: {e}") from e

        if response.is_error:
            self._raise_for_status(response)

        content_type = response.headers.get('content-type', '')
        if 'application/json' not in content_type:
            return {'success': True}
        try:
            return response.json()
        except ValueError as e:
            raise TransientUpstreamError(f"Malformed JSON from {endpoint}: {e}") from e

    async def _fetch(
        self,
        resource: ResourceName,
        endpoint: Endpoint,
        method: str = 'GET',
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Quota check, then the request wrapped in retries."""
        try:
            self.quota_limiter.check_quota(resource)
            return await retry_with_backoff(
                lambda: self._request(endpoint, method, payload),
                self.backoff_policy,
                retry_condition=is_retryable,
                operation_name=f"{method} {endpoint}",
                event_handler=self._event_handler,
            )
        except QuotaExhaustedError as e:
            logger.error(f"Quota exhausted calling {endpoint}: {e}")
            self.degradation.escalate(DegradationLevel.REDUCED, f"{resource} quota limit approached")
            raise

    # --- Pipeline helpers ---

    @staticmethod
    def _cache_key(prefix: str, criteria: Any) -> CacheKey:
        return CacheKey(f"{prefix}-{json.dumps(criteria, sort_keys=True, default=str)}")

    async def _query(
        self,
        endpoint: Endpoint,
        result_field: str,
        cache_key: CacheKey,
        default_factory: Callable[[], Any],
        payload: Optional[Dict[str, Any]] = None,
        method: str = 'POST',
    ) -> Any:
        """Reads ``result_field`` from an endpoint and caches it under ``cache_key``."""
        response = await self._fetch(READ_RESOURCE, endpoint, method, payload)
        result = response.get(result_field)
        if result is None:
            result = default_factory()
        self.degradation.set_cached_result(cache_key, result, self.cache_ttl)
        return result

    def _cached_or(self, cache_key: CacheKey, operation: AsyncOperation) -> AsyncOperation:
        """Minimal variant: serve the cache when possible, else run the cheap query."""
        async def minimal() -> Any:
            cached = self.degradation.get_cached_result(cache_key)
            if cached is not None:
                return cached
            return await operation()
        return minimal

    async def _guarded(self, operations: OperationSet, default_factory: Callable[[], Any]) -> Any:
        """Runs an operation set through the breaker and the degradation controller."""
        return await self.breaker.fire(
            lambda: self.degradation.execute_with_degradation(operations, emergency=default_factory()),
            fallback=default_factory,
        )

    # --- Campaign targeting ---

    @staticmethod
    def _user_query_payload(criteria: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'filters': criteria.get('filters') or {},
            'location': criteria.get('location'),
            'traderType': criteria.get('traderType'),
            'interests': criteria.get('interests'),
            'limit': criteria.get('limit') or 100,
            'offset': criteria.get('offset') or 0,
        }

    async def get_users_for_campaign(self, criteria: Criteria) -> List[Dict[str, Any]]:
        """Users matching the targeting criteria; [] when the service is unavailable."""
        criteria = dict(criteria or {})
        key = self._cache_key('users', criteria)
        endpoint = Endpoint('/api/users/query')

        reduced_criteria = {
            **criteria,
            'limit': min(criteria.get('limit') or 50, 50),
            'filters': {'location': criteria.get('location')},
        }
        minimal_criteria = {'limit': 20, 'filters': {'location': criteria.get('location')}}

        operations = OperationSet(
            cache_key=key,
            full=lambda: self._query(endpoint, 'users', key, list, self._user_query_payload(criteria)),
            reduced=lambda: self._query(endpoint, 'users', key, list, self._user_query_payload(reduced_criteria)),
            minimal=self._cached_or(
                key, lambda: self._query(endpoint, 'users', key, list, self._user_query_payload(minimal_criteria))
            ),
        )
        return await self._guarded(operations, list)

    async def get_products_for_campaign(self, criteria: Criteria) -> List[Dict[str, Any]]:
        """Products for campaign content; [] when the service is unavailable."""
        criteria = dict(criteria or {})
        key = self._cache_key('products', criteria)
        endpoint = Endpoint('/api/products/query')

        full_payload = {
            'category': criteria.get('category'),
            'location': criteria.get('location'),
            'traderId': criteria.get('traderId'),
            'availability': criteria.get('availability') or 'available',
            'limit': criteria.get('limit') or 50,
        }
        reduced_payload = {
            'category': criteria.get('category'),
            'location': criteria.get('location'),
            'availability': 'available',
            'limit': min(criteria.get('limit') or 25, 25),
        }
        minimal_payload = {'location': criteria.get('location'), 'availability': 'available', 'limit': 10}

        operations = OperationSet(
            cache_key=key,
            full=lambda: self._query(endpoint, 'products', key, list, full_payload),
            reduced=lambda: self._query(endpoint, 'products', key, list, reduced_payload),
            minimal=self._cached_or(key, lambda: self._query(endpoint, 'products', key, list, minimal_payload)),
        )
        return await self._guarded(operations, list)

    async def get_recent_trade_activity(self, criteria: Criteria) -> List[Dict[str, Any]]:
        """Recent trades for targeting; [] when the service is unavailable."""
        criteria = dict(criteria or {})
        key = self._cache_key('trades', criteria)
        endpoint = Endpoint('/api/trades/recent')

        full_payload = {
            'userId': criteria.get('userId'),
            'category': criteria.get('category'),
            'timeframe': criteria.get('timeframe') or '30d',
            'limit': criteria.get('limit') or 20,
        }
        reduced_payload = {**full_payload, 'timeframe': '7d', 'limit': min(full_payload['limit'], 10)}

        operations = OperationSet(
            cache_key=key,
            full=lambda: self._query(endpoint, 'trades', key, list, full_payload),
            reduced=lambda: self._query(endpoint, 'trades', key, list, reduced_payload),
        )
        return await self._guarded(operations, list)

    async def get_users_batch(self, user_ids: List[str]) -> List[Dict[str, Any]]:
        """Several user profiles in one request; [] when the service is unavailable."""
        key = self._cache_key('users-batch', sorted(user_ids))
        endpoint = Endpoint('/api/users/batch')
        operations = OperationSet(
            cache_key=key,
            full=lambda: self._query(endpoint, 'users', key, list, {'userIds': list(user_ids)}),
        )
        return await self._guarded(operations, list)

    async def _get_entity(self, prefix: str, endpoint: str, result_field: str, default_factory: Callable[[], Any]) -> Any:
        key = CacheKey(f"{prefix}-{endpoint}")
        operations = OperationSet(
            cache_key=key,
            full=lambda: self._query(Endpoint(endpoint), result_field, key, default_factory, method='GET'),
        )
        return await self._guarded(operations, default_factory)

    async def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self._get_entity('user', f'/api/users/{user_id}', 'user', lambda: None)

    async def get_trader_profile(self, trader_id: str) -> Optional[Dict[str, Any]]:
        return await self._get_entity('trader', f'/api/traders/{trader_id}', 'trader', lambda: None)

    async def get_user_preferences(self, user_id: str) -> Dict[str, Any]:
        return await self._get_entity('preferences', f'/api/users/{user_id}/preferences', 'preferences', dict)

    # --- Fire-and-forget writes ---

    async def _fire_and_forget(self, operation: str, endpoint: Endpoint, payload: Dict[str, Any]) -> bool:
        """Posts a non-critical update. Returns False instead of raising on failure.

        Raises:
            ConfigurationError: Never swallowed.
        """
        try:
            await self._fetch(WRITE_RESOURCE, endpoint, 'POST', payload)
            return True
        except ConfigurationError:
            raise
        except Exception as e:
            error = NonCriticalSideEffectError(f"{operation} failed: {e}", operation=operation, cause=e)
            logger.error(f"Non-critical update failed, continuing: {error}")
            dispatch_event(self._event_handler, SideEffectFailed(
                operation=operation,
                error_type=type(e).__name__,
                error_message=str(e),
            ))
            return False

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    async def update_user_engagement(self, user_id: str, campaign_id: str, engagement: Dict[str, Any]) -> bool:
        return await self._fire_and_forget(
            'update_user_engagement',
            Endpoint(f'/api/users/{user_id}/engagement'),
            {
                'campaignId': campaign_id,
                'engagement': engagement,
                'timestamp': self._now_iso(),
                'source': 'campaign-engine',
            },
        )

    async def update_campaign_metrics(self, campaign_id: str, metrics: Dict[str, Any]) -> bool:
        return await self._fire_and_forget(
            'update_campaign_metrics',
            Endpoint('/api/campaigns/metrics'),
            {'campaignId': campaign_id, 'metrics': metrics, 'timestamp': self._now_iso()},
        )

    # --- Health ---

    async def health_check(self) -> bool:
        """Pings the data service directly, bypassing breaker, quota and retries."""
        try:
            await self._request(Endpoint('/health'))
            return True
        except ResilienceError as e:
            logger.error(f"Data service health check failed: {e}")
            return False

    def get_health(self) -> HealthSnapshot:
        """Breaker, quota and degradation state for a health-check endpoint."""
        return HealthSnapshot(
            breaker=self.breaker.get_stats(),
            quotas=self.quota_limiter.get_usage_stats(),
            degradation=self.degradation.get_status(),
        )
