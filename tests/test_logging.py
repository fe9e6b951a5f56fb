"""Tests for structured logging, schema ordering and sanitization."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import patch

import httpx

from aibox.logging import (
    EVENT_KEY_ORDER,
    StructuredTextFormatter,
    build_run_log_path,
    extract_http_error_context,
    log_event,
    sanitize_error_message,
    summarize_text,
)


def _formatted_keys(output: str) -> list[str]:
    keys: list[str] = []
    for line in output.splitlines():
        if line.startswith("==="):
            continue
        if ": " in line:
            key, _ = line.split(": ", 1)
            keys.append(key)
    return keys


def _record(message: str, name: str = "root") -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )


def test_structured_formatter_orders_known_event_keys() -> None:
    formatter = StructuredTextFormatter()
    payload = {
        "event": "ai_response",
        "ts": "2026-02-24T00:00:00+00:00",
        "zzz_extra": 1,
        "output_chars": 12,
        "model": "gpt-4o",
        "provider": "openai",
        "latency_ms": 120.5,
        "ttft_ms": None,
    }

    result = formatter.format(_record(json.dumps(payload)))

    assert result.startswith("=== ai_response ===")
    keys = _formatted_keys(result)
    assert keys[:3] == ["ts", "level", "provider"]
    assert keys.index("model") < keys.index("latency_ms") < keys.index("output_chars")
    assert keys[-1] == "zzz_extra"
    assert "ttft_ms" not in keys


def test_structured_formatter_extracts_httpx_request_fields() -> None:
    formatter = StructuredTextFormatter()
    record = logging.LogRecord(
        name="httpx",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg='HTTP Request: %s %s "%s %d %s"',
        args=("POST", "https://api.openai.com/v1/embeddings", "HTTP/1.1", 200, "OK"),
        exc_info=None,
    )

    result = formatter.format(record)

    assert "=== httpx_request ===" in result
    assert "http_url: https://api.openai.com/v1/embeddings" in result
    assert "http_status: 200" in result


def test_structured_formatter_separates_entries_with_blank_line() -> None:
    formatter = StructuredTextFormatter()
    first = formatter.format(_record("plain message", name="aibox.cli"))
    second = formatter.format(_record("another", name="aibox.cli"))

    assert first.startswith("=== aibox.cli ===")
    assert "message: plain message" in first
    assert second.startswith("\n=== aibox.cli ===")


def test_structured_formatter_escapes_newlines() -> None:
    formatter = StructuredTextFormatter()
    result = formatter.format(_record(json.dumps({"event": "provider_log", "message": "a\nb"})))
    assert "message: a\\nb" in result


def test_structured_formatter_stamps_plain_records() -> None:
    formatter = StructuredTextFormatter()
    result = formatter.format(_record("plain message", name="aibox.cli"))

    assert _formatted_keys(result) == ["ts", "level", "logger", "message"]
    assert "level: INFO" in result


def test_every_schema_starts_with_timestamp() -> None:
    for event, keys in EVENT_KEY_ORDER.items():
        assert keys[:2] == ["ts", "level"], event


def test_log_event_emits_json_and_expands_paths() -> None:
    with patch("aibox.logging.events.logging.log") as mock_log:
        log_event("app_start", level=logging.INFO, log_file="~/x.log", command="chat", extra=Path("/tmp/a"))

    level, message = mock_log.call_args.args
    payload = json.loads(message)
    assert level == logging.INFO
    assert payload["event"] == "app_start"
    assert payload["log_file"] == str(Path("~/x.log").expanduser())
    assert payload["extra"] == "/tmp/a"
    assert "ts" in payload


def test_extract_http_error_context_from_status_error() -> None:
    request = httpx.Request("GET", "http://localhost:11434/api/tags")
    response = httpx.Response(503, request=request)
    error = httpx.HTTPStatusError("unavailable", request=request, response=response)

    context = extract_http_error_context(error)

    assert context == {
        "http_method": "GET",
        "http_url": "http://localhost:11434/api/tags",
        "http_status": 503,
        "http_reason": "Service Unavailable",
    }


def test_extract_http_error_context_without_request() -> None:
    assert extract_http_error_context(httpx.ReadError("reset")) == {}
    assert extract_http_error_context(ValueError("plain")) == {}


def test_summarize_text_normalizes_and_truncates() -> None:
    assert summarize_text("  a\n  b\tc ") == "a b c"
    assert summarize_text("x" * 50, limit=10) == "xxxxxxx..."
    assert summarize_text(None) == ""


def test_build_run_log_path_is_unique(tmp_path) -> None:
    first = build_run_log_path(str(tmp_path / "logs"))
    Path(first).touch()
    second = build_run_log_path(str(tmp_path / "logs"))

    assert first != second
    assert Path(first).name.startswith("aibox_")
    assert Path(second).suffix == ".log"


def test_sanitize_error_message_redacts_credentials() -> None:
    message = (
        "openai sk-proj-abcdefghijklmnop claude sk-ant-api03-abcdefghijkl "
        "github gho_abcdefghijklmnopqrstuvwx copilot tid=0123456789abcdef;exp=1 "
        "header Bearer abcdefghijklmnopqrstuvwxyz"
    )

    sanitized = sanitize_error_message(message)

    assert "abcdefghijklmnop" not in sanitized
    assert "gho_" not in sanitized
    assert "tid=" not in sanitized
    assert "[REDACTED_API_KEY]" in sanitized
    assert "[REDACTED_GITHUB_TOKEN]" in sanitized
    assert "[REDACTED_COPILOT_TOKEN]" in sanitized
    assert "Bearer [REDACTED_TOKEN]" in sanitized


def test_sanitize_error_message_leaves_plain_text() -> None:
    assert sanitize_error_message("Connection refused") == "Connection refused"
