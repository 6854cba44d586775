"""saasgate 公開API。"""

import logging

from saasgate.client import HttpClient, create_http_client
from saasgate.config import (
    DEFAULT_LIMITER_CONFIG,
    PROVIDER_LIMITS,
    HttpClientConfig,
    LimiterConfig,
    RetryConfig,
)
from saasgate.credentials import AuthManager, Credentials, apply_credentials
from saasgate.enums import AuthScheme, FailureKind, Provider, TokenType
from saasgate.errors import (
    SaasClientError,
    SaasConfigError,
    SaasCredentialsError,
    SaasError,
    SaasHttpStatusError,
    SaasNetworkError,
    SaasProfileError,
    SaasRateLimitedError,
    SaasRequestError,
    SaasRetryExhaustedError,
    SaasServerError,
    SaasTimeoutError,
)
from saasgate.http import BackoffPolicy, WaitDecision
from saasgate.limiter import LimiterStats, TokenBucketLimiter
from saasgate.profiles import ProfileManager
from saasgate.registry import LimiterRegistry, get_registry

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "DEFAULT_LIMITER_CONFIG",
    "PROVIDER_LIMITS",
    "AuthManager",
    "AuthScheme",
    "BackoffPolicy",
    "Credentials",
    "FailureKind",
    "HttpClient",
    "HttpClientConfig",
    "LimiterConfig",
    "LimiterRegistry",
    "LimiterStats",
    "ProfileManager",
    "Provider",
    "RetryConfig",
    "SaasClientError",
    "SaasConfigError",
    "SaasCredentialsError",
    "SaasError",
    "SaasHttpStatusError",
    "SaasNetworkError",
    "SaasProfileError",
    "SaasRateLimitedError",
    "SaasRequestError",
    "SaasRetryExhaustedError",
    "SaasServerError",
    "SaasTimeoutError",
    "TokenBucketLimiter",
    "TokenType",
    "WaitDecision",
    "apply_credentials",
    "create_http_client",
    "get_registry",
]
