"""Configuration settings for the Schedule Intent Resolver service"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings"""

    # Server
    port: int = 8003
    debug: bool = False
    log_level: str = "INFO"

    # Redis (durable memory + schedule documents)
    redis_url: str = "redis://redis:6379"
    redis_key_prefix: str = "schedule-resolver:"
    redis_max_connections: int = 20

    # External classification service
    intent_service_url: str = "http://intent:8003"
    service_timeout: int = 10  # seconds
    external_classifier_timeout: float = 8.0  # seconds, wraps the whole model call
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset: int = 60  # seconds

    # Rule table (None -> built-in defaults)
    rules_path: Optional[str] = None

    # Decision cascade
    fallback_model_threshold: float = 0.6
    fallback_rule_threshold: float = 0.5
    model_override_threshold: float = 0.85
    reasoning_chain_threshold: float = 0.8
    reasoning_min_steps: int = 3
    rule_strong_threshold: float = 0.9
    rule_weak_model_threshold: float = 0.7
    completion_threshold: float = 0.7
    mutating_intent_prefixes: List[str] = ["add_", "record_"]

    # Short-term context
    context_ttl: int = 300  # 5 minutes
    cleanup_interval: float = 60.0  # seconds, sweep of expired contexts and cache entries
    context_trigger_intents: List[str] = [
        "add_course",
        "modify_course",
        "cancel_course",
        "query_course_content",
        "record_lesson_content",
        "record_homework",
        "query_schedule",
        "set_reminder",
    ]

    # Long-term memory
    max_records: int = 20
    durable_intents: List[str] = [
        "add_course",
        "modify_course",
        "record_lesson_content",
        "set_reminder",
    ]

    # Memory cache
    lru_cache_size: int = 100
    cache_ttl: int = 300  # seconds
    max_cache_bytes: int = 50 * 1024 * 1024

    # Batched persistence
    batch_update_enabled: bool = True
    batch_update_interval: float = 5.0  # seconds, debounce window
    batch_max_delay: float = 30.0  # seconds, upper bound on any pending write

    # Monitoring
    metrics_enabled: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
