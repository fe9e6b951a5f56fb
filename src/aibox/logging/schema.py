"""Preferred key order for structured log events."""

from __future__ import annotations

LOG_PATH_FIELDS = frozenset(
    {
        "config_file",
        "settings_file",
        "database_file",
        "log_file",
        "logs_dir",
        "source_file",
    }
)

DEFAULT_EVENT_KEY_ORDER: list[str] = ["ts", "level", "logger"]

EVENT_KEY_ORDER: dict[str, list[str]] = {
    "app_start": ["ts", "level", "command", "config_file", "log_file", "database_file"],
    "app_stop": ["ts", "level", "reason", "uptime_ms", "error_type", "error"],
    "ai_request": [
        "ts",
        "level",
        "provider",
        "model",
        "turn_count",
        "input_chars",
    ],
    "ai_response": [
        "ts",
        "level",
        "provider",
        "model",
        "latency_ms",
        "ttft_ms",
        "delta_count",
        "output_chars",
        "skipped_fragments",
    ],
    "ai_error": [
        "ts",
        "level",
        "provider",
        "model",
        "latency_ms",
        "delta_count",
        "error_type",
        "error",
        "http_method",
        "http_url",
        "http_status",
    ],
    "stream_fragment_skipped": ["ts", "level", "provider", "reason", "fragment"],
    "models_fetched": ["ts", "level", "provider", "model_count", "source"],
    "provider_log": ["ts", "level", "provider", "message"],
    "provider_retry": [
        "ts",
        "level",
        "provider",
        "operation",
        "attempt",
        "sleep_sec",
        "result",
        "error_type",
        "error",
    ],
    "embedding_request": ["ts", "level", "model", "batch_size", "input_chars"],
    "embedding_error": ["ts", "level", "model", "batch_size", "error_type", "error"],
    "document_ingested": ["ts", "level", "document_id", "filename", "chunk_count", "dimension"],
    "retrieval": ["ts", "level", "top_k", "candidate_count", "result_count", "best_score"],
    "device_flow_started": ["ts", "level", "verification_uri", "interval", "expires_in"],
    "device_flow_poll": ["ts", "level", "outcome", "interval"],
    "token_exchange": ["ts", "level", "result", "latency_ms", "expires_in", "error_type", "error"],
    "token_cache_hit": ["ts", "level", "expires_in"],
    "logout": ["ts", "level", "phase"],
}
