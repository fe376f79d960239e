"""Model with service configuration."""

from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    FilePath,
    NonNegativeInt,
    PositiveInt,
    SecretStr,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self

import constants
from log import get_logger

logger = get_logger(__name__)


class ConfigurationBase(BaseModel):
    """Base class for all configuration models that rejects unknown fields."""

    model_config = ConfigDict(extra="forbid")


class TLSConfiguration(ConfigurationBase):
    """TLS configuration."""

    tls_certificate_path: Optional[FilePath] = None
    tls_key_path: Optional[FilePath] = None
    tls_key_password: Optional[FilePath] = None

    @model_validator(mode="after")
    def check_tls_configuration(self) -> Self:
        """Check that certificate and key are configured together."""
        if (self.tls_certificate_path is None) != (self.tls_key_path is None):
            raise ValueError(
                "Both tls_certificate_path and tls_key_path need to be configured"
            )
        return self


class CORSConfiguration(ConfigurationBase):
    """CORS configuration."""

    allow_origins: list[str] = [
        "*"
    ]  # not AnyHttpUrl: we need to support "*" that is not valid URL
    allow_credentials: bool = False
    allow_methods: list[str] = ["*"]
    allow_headers: list[str] = ["*"]

    @model_validator(mode="after")
    def check_cors_configuration(self) -> Self:
        """Check CORS configuration."""
        # credentials are not allowed with wildcard origins per CORS/Fetch spec.
        # see https://fastapi.tiangolo.com/tutorial/cors/
        if self.allow_credentials and "*" in self.allow_origins:
            raise ValueError(
                "Invalid CORS configuration: allow_credentials can not be set to true when "
                "allow origins contains '*' wildcard."
                "Use explicit origins or disable credential."
            )
        return self


class ServiceConfiguration(ConfigurationBase):
    """Service configuration."""

    host: str = "localhost"
    port: PositiveInt = 8080
    workers: PositiveInt = 1
    color_log: bool = True
    access_log: bool = True
    tls_config: TLSConfiguration = Field(default_factory=TLSConfiguration)
    cors: CORSConfiguration = Field(default_factory=CORSConfiguration)

    @model_validator(mode="after")
    def check_service_configuration(self) -> Self:
        """Check service configuration."""
        if self.port > 65535:
            raise ValueError("Port value should be less than 65536")
        return self


class Tier(str, Enum):
    """Caller tiers, from the most restricted one to the unrestricted one."""

    DEMO = "demo"
    AUTHENTICATED = "authenticated"
    PREMIUM = "premium"
    ADMIN = "admin"


class TokenQuotaConfiguration(ConfigurationBase):
    """Token ceilings applied to chat completions.

    A ceiling set to zero disables that particular check.
    """

    per_request: NonNegativeInt = constants.DEFAULT_TOKEN_LIMIT_PER_REQUEST
    per_session: NonNegativeInt = constants.DEFAULT_TOKEN_LIMIT_PER_SESSION
    daily: NonNegativeInt = constants.DEFAULT_TOKEN_LIMIT_PER_DAY
    monthly: NonNegativeInt = constants.DEFAULT_TOKEN_LIMIT_PER_MONTH


class OcrQuotaConfiguration(ConfigurationBase):
    """Page, document and queue ceilings applied to OCR jobs."""

    max_file_size_mb: PositiveInt = constants.DEFAULT_OCR_MAX_FILE_SIZE_MB
    max_pages_per_document: NonNegativeInt = constants.DEFAULT_OCR_MAX_PAGES_PER_DOCUMENT
    max_documents_per_session: NonNegativeInt = (
        constants.DEFAULT_OCR_MAX_DOCUMENTS_PER_SESSION
    )
    max_pages_per_session: NonNegativeInt = constants.DEFAULT_OCR_MAX_PAGES_PER_SESSION
    max_pages_per_day: NonNegativeInt = constants.DEFAULT_OCR_MAX_PAGES_PER_DAY
    max_documents_per_day: NonNegativeInt = constants.DEFAULT_OCR_MAX_DOCUMENTS_PER_DAY
    max_concurrent_jobs: NonNegativeInt = constants.DEFAULT_OCR_MAX_CONCURRENT_JOBS
    processing_timeout: PositiveInt = constants.DEFAULT_OCR_PROCESSING_TIMEOUT
    supported_image_types: list[str] = Field(
        default_factory=lambda: list(constants.SUPPORTED_IMAGE_TYPES)
    )
    supported_document_types: list[str] = Field(
        default_factory=lambda: list(constants.SUPPORTED_DOCUMENT_TYPES)
    )

    @property
    def max_file_size_bytes(self) -> int:
        """Maximum accepted file size in bytes."""
        return self.max_file_size_mb * constants.BYTES_PER_MEGABYTE

    @property
    def supported_content_types(self) -> list[str]:
        """All accepted content types, documents first, without duplicates."""
        return list(
            dict.fromkeys(self.supported_document_types + self.supported_image_types)
        )


class TierLimitsConfiguration(ConfigurationBase):
    """Request rate ceilings of one tier, None meaning unbounded."""

    requests_per_minute: Optional[PositiveInt] = None
    requests_per_hour: Optional[PositiveInt] = None
    requests_per_day: Optional[PositiveInt] = None
    min_request_interval_ms: NonNegativeInt = 0


ADMIN_TIER_LIMITS = TierLimitsConfiguration()


class RateLimitConfiguration(ConfigurationBase):
    """Rate ceilings per tier.

    The admin tier is not configurable: it is always unbounded.
    """

    demo: TierLimitsConfiguration = Field(
        default_factory=lambda: TierLimitsConfiguration(
            requests_per_minute=10,
            requests_per_hour=60,
            requests_per_day=200,
            min_request_interval_ms=2000,
        )
    )
    authenticated: TierLimitsConfiguration = Field(
        default_factory=lambda: TierLimitsConfiguration(
            requests_per_minute=30,
            requests_per_hour=300,
            requests_per_day=1000,
            min_request_interval_ms=500,
        )
    )
    premium: TierLimitsConfiguration = Field(
        default_factory=lambda: TierLimitsConfiguration(
            requests_per_minute=60,
            requests_per_hour=1000,
            requests_per_day=5000,
            min_request_interval_ms=100,
        )
    )

    def for_tier(self, tier: Tier) -> TierLimitsConfiguration:
        """Return the limits that apply to the given tier."""
        match tier:
            case Tier.DEMO:
                return self.demo
            case Tier.AUTHENTICATED:
                return self.authenticated
            case Tier.PREMIUM:
                return self.premium
            case Tier.ADMIN:
                return ADMIN_TIER_LIMITS
            case _:
                raise ValueError(f"Unknown tier {tier}")


class AdminConfiguration(ConfigurationBase):
    """Operator escape hatches.

    Each key only matches when its switch is enabled and the key itself is
    not empty.
    """

    override_enabled: bool = False
    override_key: Optional[SecretStr] = None
    ocr_bypass_enabled: bool = False
    ocr_bypass_key: Optional[SecretStr] = None


class FeatureFlagsConfiguration(ConfigurationBase):
    """Feature switches exposed to clients, not enforced by the service."""

    enable_export: bool = False
    enable_bulk_upload: bool = False
    enable_advanced_search: bool = False
    enable_research_mode: bool = True
    enable_customization: bool = False
    enable_api_access: bool = False


class HitLogConfiguration(ConfigurationBase):
    """Hit log configuration."""

    capacity: PositiveInt = constants.DEFAULT_HIT_LOG_CAPACITY


class QuotaSchedulerConfiguration(BaseModel):
    """Quota scheduler configuration."""

    enabled: bool = True
    period: PositiveInt = constants.DEFAULT_QUOTA_SCHEDULER_PERIOD


class QuotaHandlersConfiguration(ConfigurationBase):
    """Configuration of all admission components."""

    tokens: TokenQuotaConfiguration = Field(default_factory=TokenQuotaConfiguration)
    ocr: OcrQuotaConfiguration = Field(default_factory=OcrQuotaConfiguration)
    rate_limits: RateLimitConfiguration = Field(default_factory=RateLimitConfiguration)
    admin: AdminConfiguration = Field(default_factory=AdminConfiguration)
    hit_log: HitLogConfiguration = Field(default_factory=HitLogConfiguration)
    scheduler: QuotaSchedulerConfiguration = Field(
        default_factory=QuotaSchedulerConfiguration
    )
    session_ttl: PositiveInt = int(constants.SESSION_TTL.total_seconds())


class Configuration(ConfigurationBase):
    """Global service configuration."""

    name: str = "Usage Gate"
    service: ServiceConfiguration = Field(default_factory=ServiceConfiguration)
    quota_handlers: QuotaHandlersConfiguration = Field(
        default_factory=QuotaHandlersConfiguration
    )
    features: FeatureFlagsConfiguration = Field(
        default_factory=FeatureFlagsConfiguration
    )

    def dump(self, filename: str = "configuration.json") -> None:
        """Dump actual configuration into JSON file."""
        with open(filename, "w", encoding="utf-8") as fout:
            fout.write(self.model_dump_json(indent=4))


def _env(*names: str) -> Any:
    """Declare an override read from the first environment variable set."""
    return Field(default=None, validation_alias=AliasChoices(*names))


class EnvironmentOverrides(BaseSettings):
    """Ceilings and switches overridden from the environment.

    Every override has a primary GATE_* variable followed by the legacy
    names still honoured for existing deployments. Values are read once,
    when configuration is loaded; malformed values are ignored.
    """

    model_config = SettingsConfigDict(
        env_ignore_empty=True, extra="ignore", case_sensitive=False
    )

    # maps override field to its location in the configuration tree
    TARGETS: ClassVar[dict[str, tuple[str, ...]]] = {
        "token_per_request": ("quota_handlers", "tokens", "per_request"),
        "token_per_session": ("quota_handlers", "tokens", "per_session"),
        "token_daily": ("quota_handlers", "tokens", "daily"),
        "token_monthly": ("quota_handlers", "tokens", "monthly"),
        "ocr_max_file_size_mb": ("quota_handlers", "ocr", "max_file_size_mb"),
        "ocr_max_pages_per_document": (
            "quota_handlers",
            "ocr",
            "max_pages_per_document",
        ),
        "ocr_max_documents_per_session": (
            "quota_handlers",
            "ocr",
            "max_documents_per_session",
        ),
        "ocr_max_pages_per_session": ("quota_handlers", "ocr", "max_pages_per_session"),
        "ocr_max_pages_per_day": ("quota_handlers", "ocr", "max_pages_per_day"),
        "ocr_max_documents_per_day": ("quota_handlers", "ocr", "max_documents_per_day"),
        "ocr_max_concurrent_jobs": ("quota_handlers", "ocr", "max_concurrent_jobs"),
        "ocr_processing_timeout_ms": ("quota_handlers", "ocr", "processing_timeout"),
        "admin_override_enabled": ("quota_handlers", "admin", "override_enabled"),
        "admin_override_key": ("quota_handlers", "admin", "override_key"),
        "ocr_bypass_enabled": ("quota_handlers", "admin", "ocr_bypass_enabled"),
        "ocr_bypass_key": ("quota_handlers", "admin", "ocr_bypass_key"),
        "demo_rpm": ("quota_handlers", "rate_limits", "demo", "requests_per_minute"),
        "demo_rph": ("quota_handlers", "rate_limits", "demo", "requests_per_hour"),
        "demo_rpd": ("quota_handlers", "rate_limits", "demo", "requests_per_day"),
        "demo_min_interval_ms": (
            "quota_handlers",
            "rate_limits",
            "demo",
            "min_request_interval_ms",
        ),
        "authenticated_rpm": (
            "quota_handlers",
            "rate_limits",
            "authenticated",
            "requests_per_minute",
        ),
        "authenticated_rph": (
            "quota_handlers",
            "rate_limits",
            "authenticated",
            "requests_per_hour",
        ),
        "authenticated_rpd": (
            "quota_handlers",
            "rate_limits",
            "authenticated",
            "requests_per_day",
        ),
        "authenticated_min_interval_ms": (
            "quota_handlers",
            "rate_limits",
            "authenticated",
            "min_request_interval_ms",
        ),
        "premium_rpm": (
            "quota_handlers",
            "rate_limits",
            "premium",
            "requests_per_minute",
        ),
        "premium_rph": ("quota_handlers", "rate_limits", "premium", "requests_per_hour"),
        "premium_rpd": ("quota_handlers", "rate_limits", "premium", "requests_per_day"),
        "premium_min_interval_ms": (
            "quota_handlers",
            "rate_limits",
            "premium",
            "min_request_interval_ms",
        ),
        "feature_export": ("features", "enable_export"),
        "feature_bulk_upload": ("features", "enable_bulk_upload"),
        "feature_advanced_search": ("features", "enable_advanced_search"),
        "feature_research_mode": ("features", "enable_research_mode"),
        "feature_customization": ("features", "enable_customization"),
        "feature_api_access": ("features", "enable_api_access"),
    }

    token_per_request: Optional[NonNegativeInt] = _env(
        "GATE_TOKEN_LIMIT_PER_REQUEST",
        "DEMO_TOKEN_LIMIT_PER_REQUEST",
        "TOKEN_LIMIT_PER_REQUEST",
    )
    token_per_session: Optional[NonNegativeInt] = _env(
        "GATE_TOKEN_LIMIT_PER_SESSION",
        "DEMO_TOKEN_LIMIT_PER_SESSION",
        "TOKEN_LIMIT_PER_SESSION",
    )
    token_daily: Optional[NonNegativeInt] = _env(
        "GATE_TOKEN_LIMIT_PER_DAY",
        "DEMO_TOKEN_LIMIT_PER_DAY",
        "TOKEN_LIMIT_DAILY_PER_USER",
    )
    token_monthly: Optional[NonNegativeInt] = _env(
        "GATE_TOKEN_LIMIT_PER_MONTH",
        "DEMO_TOKEN_LIMIT_PER_MONTH",
        "TOKEN_LIMIT_MONTHLY_PER_USER",
    )

    ocr_max_file_size_mb: Optional[PositiveInt] = _env(
        "GATE_OCR_MAX_FILE_SIZE_MB", "DEMO_OCR_MAX_FILE_SIZE_MB", "MAX_FILE_SIZE_MB"
    )
    ocr_max_pages_per_document: Optional[NonNegativeInt] = _env(
        "GATE_OCR_MAX_PAGES_PER_DOC", "DEMO_OCR_MAX_PAGES_PER_DOC"
    )
    ocr_max_documents_per_session: Optional[NonNegativeInt] = _env(
        "GATE_OCR_MAX_DOCS_PER_SESSION", "DEMO_OCR_MAX_DOCS_PER_SESSION"
    )
    ocr_max_pages_per_session: Optional[NonNegativeInt] = _env(
        "GATE_OCR_MAX_PAGES_PER_SESSION", "DEMO_OCR_MAX_PAGES_PER_SESSION"
    )
    ocr_max_pages_per_day: Optional[NonNegativeInt] = _env(
        "GATE_OCR_DAILY_PAGE_LIMIT",
        "DEMO_OCR_DAILY_PAGE_LIMIT",
        "OCR_LIMIT_DAILY_PAGES",
    )
    ocr_max_documents_per_day: Optional[NonNegativeInt] = _env(
        "GATE_OCR_DAILY_DOC_LIMIT", "DEMO_OCR_DAILY_DOC_LIMIT"
    )
    ocr_max_concurrent_jobs: Optional[NonNegativeInt] = _env(
        "GATE_OCR_MAX_CONCURRENT_JOBS", "DEMO_OCR_MAX_CONCURRENT_JOBS"
    )
    ocr_processing_timeout_ms: Optional[PositiveInt] = _env(
        "GATE_OCR_TIMEOUT_MS", "DEMO_OCR_TIMEOUT_MS"
    )

    admin_override_enabled: Optional[bool] = _env(
        "GATE_ADMIN_OVERRIDE_ENABLED", "DEMO_ADMIN_OVERRIDE_ENABLED"
    )
    admin_override_key: Optional[SecretStr] = _env(
        "GATE_ADMIN_OVERRIDE_KEY", "DEMO_ADMIN_OVERRIDE_KEY", "ADMIN_OVERRIDE_KEY"
    )
    ocr_bypass_enabled: Optional[bool] = _env(
        "GATE_OCR_BYPASS_ENABLED", "DEMO_OCR_BYPASS_ENABLED"
    )
    ocr_bypass_key: Optional[SecretStr] = _env(
        "GATE_OCR_BYPASS_KEY", "DEMO_OCR_BYPASS_KEY"
    )

    demo_rpm: Optional[PositiveInt] = _env("GATE_DEMO_RATE_LIMIT_RPM", "DEMO_RATE_LIMIT_RPM")
    demo_rph: Optional[PositiveInt] = _env("GATE_DEMO_RATE_LIMIT_RPH", "DEMO_RATE_LIMIT_RPH")
    demo_rpd: Optional[PositiveInt] = _env("GATE_DEMO_RATE_LIMIT_RPD", "DEMO_RATE_LIMIT_RPD")
    demo_min_interval_ms: Optional[NonNegativeInt] = _env(
        "GATE_DEMO_RATE_LIMIT_MIN_INTERVAL_MS", "DEMO_RATE_LIMIT_MIN_INTERVAL_MS"
    )
    authenticated_rpm: Optional[PositiveInt] = _env(
        "GATE_AUTH_RATE_LIMIT_RPM", "AUTH_RATE_LIMIT_RPM"
    )
    authenticated_rph: Optional[PositiveInt] = _env(
        "GATE_AUTH_RATE_LIMIT_RPH", "AUTH_RATE_LIMIT_RPH"
    )
    authenticated_rpd: Optional[PositiveInt] = _env(
        "GATE_AUTH_RATE_LIMIT_RPD", "AUTH_RATE_LIMIT_RPD"
    )
    authenticated_min_interval_ms: Optional[NonNegativeInt] = _env(
        "GATE_AUTH_RATE_LIMIT_MIN_INTERVAL_MS", "AUTH_RATE_LIMIT_MIN_INTERVAL_MS"
    )
    premium_rpm: Optional[PositiveInt] = _env(
        "GATE_PREMIUM_RATE_LIMIT_RPM", "PREMIUM_RATE_LIMIT_RPM"
    )
    premium_rph: Optional[PositiveInt] = _env(
        "GATE_PREMIUM_RATE_LIMIT_RPH", "PREMIUM_RATE_LIMIT_RPH"
    )
    premium_rpd: Optional[PositiveInt] = _env(
        "GATE_PREMIUM_RATE_LIMIT_RPD", "PREMIUM_RATE_LIMIT_RPD"
    )
    premium_min_interval_ms: Optional[NonNegativeInt] = _env(
        "GATE_PREMIUM_RATE_LIMIT_MIN_INTERVAL_MS", "PREMIUM_RATE_LIMIT_MIN_INTERVAL_MS"
    )

    feature_export: Optional[bool] = _env("GATE_FEATURE_EXPORT", "DEMO_FEATURE_EXPORT")
    feature_bulk_upload: Optional[bool] = _env(
        "GATE_FEATURE_BULK_UPLOAD", "DEMO_FEATURE_BULK_UPLOAD"
    )
    feature_advanced_search: Optional[bool] = _env(
        "GATE_FEATURE_ADVANCED_SEARCH", "DEMO_FEATURE_ADVANCED_SEARCH"
    )
    feature_research_mode: Optional[bool] = _env(
        "GATE_FEATURE_RESEARCH_MODE", "DEMO_FEATURE_RESEARCH_MODE"
    )
    feature_customization: Optional[bool] = _env(
        "GATE_FEATURE_CUSTOMIZATION", "DEMO_FEATURE_CUSTOMIZATION"
    )
    feature_api_access: Optional[bool] = _env(
        "GATE_FEATURE_API_ACCESS", "DEMO_FEATURE_API_ACCESS"
    )

    @field_validator("*", mode="wrap")
    @classmethod
    def ignore_malformed_value(
        cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo
    ) -> Any:
        """Drop an override that can not be parsed, keeping the configured value."""
        try:
            return handler(value)
        except ValidationError:
            logger.warning(
                "Ignoring malformed environment override for %s", info.field_name
            )
            return None

    def apply(self, data: dict[str, Any]) -> dict[str, Any]:
        """Write every override that is set into raw configuration data."""
        for field_name, path in self.TARGETS.items():
            value = getattr(self, field_name)
            if value is None:
                continue
            if isinstance(value, SecretStr):
                value = value.get_secret_value()
            if field_name == "ocr_processing_timeout_ms":
                value = max(1, value // 1000)
            node = data
            for key in path[:-1]:
                if node.get(key) is None:
                    node[key] = {}
                node = node[key]
            node[path[-1]] = value
            logger.debug("Configuration value %s overridden from environment", ".".join(path))
        return data
