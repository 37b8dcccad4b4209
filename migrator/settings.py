"""Configuration models for the migration run."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveInt,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitConfig(BaseModel):
    """At most ``count`` calls start per ``window_ms``; optional spacing between starts."""

    model_config = ConfigDict(frozen=True)

    count: PositiveInt = 60
    window_ms: PositiveInt = 60_000
    min_interval_ms: NonNegativeInt = 0


class RetryConfig(BaseModel):
    """Exponential backoff tuning shared by the fetcher and the sink."""

    model_config = ConfigDict(frozen=True)

    max_attempts: PositiveInt = 5
    base_delay_ms: NonNegativeInt = 500
    max_delay_ms: PositiveInt = 30_000
    jitter: float = Field(0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _cap_not_below_base(self) -> "RetryConfig":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms는 base_delay_ms 이상이어야 합니다.")
        return self


class PipelineConfig(BaseModel):
    """Plain values the pipeline is constructed with; it never reads the environment itself."""

    model_config = ConfigDict(frozen=True)

    favorite_label: Optional[str] = None
    global_label: Optional[str] = None
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    write_retry_max_attempts: PositiveInt = 3
    retry_validation_once: bool = False
    write_concurrency: PositiveInt = 1
    queue_maxsize: PositiveInt = 50
    report_dir: Path = Path(".")


class Settings(BaseSettings):
    """마이그레이션 실행용 환경 설정."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    pocket_cookie: Optional[SecretStr] = Field(None, alias="POCKET_COOKIE", description="Pocket 세션 쿠키 헤더 값.")
    pocket_consumer_key: Optional[SecretStr] = Field(
        None, alias="POCKET_CONSUMER_KEY", description="Pocket GraphQL consumer key."
    )
    pocket_graphql_url: str = Field(
        "https://getpocket.com/graphql",
        alias="POCKET_GRAPHQL_URL",
        description="Pocket GraphQL 엔드포인트",
    )
    omnivore_api_key: Optional[SecretStr] = Field(None, alias="OMNIVORE_API_KEY", description="Omnivore API 키.")
    omnivore_api_url: str = Field(
        "https://api-prod.omnivore.app/api/graphql",
        alias="OMNIVORE_API_URL",
        description="Omnivore GraphQL 엔드포인트",
    )
    favorite_label: Optional[str] = Field(None, alias="FAVORITE_LABEL", description="즐겨찾기 항목에 붙일 라벨.")
    global_label: Optional[str] = Field(
        None, alias="GLOBAL_IMPORT_LABEL", description="가져온 모든 항목에 붙일 라벨."
    )
    rate_limit_count: PositiveInt = Field(60, alias="RATE_LIMIT_COUNT", description="윈도우당 최대 호출 수")
    rate_limit_window_ms: PositiveInt = Field(60_000, alias="RATE_LIMIT_WINDOW_MS", description="레이트 리밋 윈도우(ms)")
    rate_limit_min_interval_ms: NonNegativeInt = Field(
        0, alias="RATE_LIMIT_MIN_INTERVAL_MS", description="호출 시작 간 최소 간격(ms)"
    )
    fetch_retry_max_attempts: PositiveInt = Field(5, alias="FETCH_RETRY_MAX_ATTEMPTS", description="페이지 조회 최대 시도")
    write_retry_max_attempts: PositiveInt = Field(3, alias="WRITE_RETRY_MAX_ATTEMPTS", description="저장 최대 시도")
    retry_base_delay_ms: NonNegativeInt = Field(500, alias="RETRY_BASE_DELAY_MS", description="백오프 시작 지연(ms)")
    retry_max_delay_ms: PositiveInt = Field(30_000, alias="RETRY_MAX_DELAY_MS", description="백오프 최대 지연(ms)")
    retry_jitter: float = Field(0.2, alias="RETRY_JITTER", description="백오프 지터 비율(0~1)")
    retry_validation_once: bool = Field(
        False, alias="RETRY_VALIDATION_ONCE", description="검증 오류를 한 번 더 시도할지 여부."
    )
    write_concurrency: PositiveInt = Field(1, alias="WRITE_CONCURRENCY", description="동시 저장 워커 수(≤8)")
    queue_maxsize: PositiveInt = Field(50, alias="QUEUE_MAXSIZE", description="생산자/소비자 사이 큐 크기")
    page_size: Optional[PositiveInt] = Field(None, alias="PAGE_SIZE", description="페이지 크기(≤100)")
    http_timeout_seconds: PositiveInt = Field(30, alias="HTTP_TIMEOUT_SECONDS", description="HTTP 타임아웃(초)")
    error_report_dir: str = Field(".", alias="ERROR_REPORT_DIR", description="실패 리포트 CSV 저장 경로.")
    log_level: str = Field("INFO", alias="LOG_LEVEL", description="로그 레벨.")
    log_json: bool = Field(False, alias="LOG_JSON", description="로그를 JSON 형식으로 출력할지 여부.")

    @field_validator("favorite_label", "global_label", mode="before")
    @classmethod
    def _blank_label_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        label = str(value).strip()
        return label or None

    @field_validator("retry_jitter")
    @classmethod
    def _validate_jitter(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("RETRY_JITTER는 0과 1 사이여야 합니다.")
        return v

    @field_validator("write_concurrency")
    @classmethod
    def _validate_concurrency(cls, v: int) -> int:
        if v > 8:
            raise ValueError("WRITE_CONCURRENCY는 8 이하여야 합니다.")
        return v

    @field_validator("page_size")
    @classmethod
    def _validate_page_size(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v > 100:
            raise ValueError("PAGE_SIZE는 100 이하여야 합니다.")
        return v

    @field_validator("error_report_dir")
    @classmethod
    def _validate_report_dir(cls, value: str) -> str:
        root = value.strip()
        if not root:
            raise ValueError("ERROR_REPORT_DIR는 공백일 수 없습니다.")
        return root

    @model_validator(mode="after")
    def _validate_retry_delays(self) -> "Settings":
        if self.retry_max_delay_ms < self.retry_base_delay_ms:
            raise ValueError("RETRY_MAX_DELAY_MS는 RETRY_BASE_DELAY_MS 이상이어야 합니다.")
        return self

    def to_pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            favorite_label=self.favorite_label,
            global_label=self.global_label,
            rate_limit=RateLimitConfig(
                count=self.rate_limit_count,
                window_ms=self.rate_limit_window_ms,
                min_interval_ms=self.rate_limit_min_interval_ms,
            ),
            retry=RetryConfig(
                max_attempts=self.fetch_retry_max_attempts,
                base_delay_ms=self.retry_base_delay_ms,
                max_delay_ms=self.retry_max_delay_ms,
                jitter=self.retry_jitter,
            ),
            write_retry_max_attempts=self.write_retry_max_attempts,
            retry_validation_once=self.retry_validation_once,
            write_concurrency=self.write_concurrency,
            queue_maxsize=self.queue_maxsize,
            report_dir=Path(self.error_report_dir),
        )


@lru_cache()
def get_settings() -> Settings:
    """환경 변수를 기준으로 Settings 인스턴스를 반환한다."""
    try:
        return Settings()
    except ValidationError as exc:
        raise RuntimeError(f"환경 변수 검증에 실패했습니다: {exc}") from exc


def reset_settings_cache() -> None:
    """Settings LRU 캐시를 초기화한다 (테스트 용도)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
