"""Tests for the structlog processors in core.logging."""

import asyncio

import pytest

from cinemirror.config import Settings
from cinemirror.core.logging import (
    REDACTED,
    add_correlation_id,
    clear_correlation_id,
    redact_secrets,
    service_context,
    set_correlation_id,
    task_name_ctx,
)


@pytest.fixture(autouse=True)
def _reset_context():
    yield
    clear_correlation_id()


class TestRedactSecrets:
    def test_api_key_in_url_is_masked(self) -> None:
        event = {
            "event": "tmdb_request_error",
            "error": "Client error for url "
            "'https://api.themoviedb.org/3/movie/550?api_key=abc123&language=en-US'",
        }

        redacted = redact_secrets(None, "error", event)  # type: ignore[arg-type]

        assert "abc123" not in redacted["error"]
        assert f"api_key={REDACTED}&language=en-US" in redacted["error"]

    def test_secret_fields_are_masked(self) -> None:
        event = {"event": "settings_loaded", "tmdb_api_key": "abc123", "Password": "pw"}

        redacted = redact_secrets(None, "info", event)  # type: ignore[arg-type]

        assert redacted["tmdb_api_key"] == REDACTED
        assert redacted["Password"] == REDACTED
        assert redacted["event"] == "settings_loaded"

    def test_other_values_are_untouched(self) -> None:
        event = {"event": "gap_fill_window", "window_start": 3, "category": "movies"}

        assert redact_secrets(None, "info", dict(event)) == event  # type: ignore[arg-type]


class TestContextProcessors:
    def test_service_context(self, test_settings: Settings) -> None:
        add_service_context = service_context(test_settings)

        event = add_service_context(None, "info", {"event": "startup"})  # type: ignore[arg-type]

        assert event["service"] == test_settings.app_name
        assert event["version"] == test_settings.app_version
        assert event["environment"] == "development"

    def test_service_context_keeps_explicit_values(self, test_settings: Settings) -> None:
        add_service_context = service_context(test_settings)

        event = add_service_context(
            None, "info", {"event": "startup", "service": "worker"}  # type: ignore[arg-type]
        )

        assert event["service"] == "worker"

    def test_correlation_id(self) -> None:
        set_correlation_id("req-42")

        event = add_correlation_id(None, "info", {"event": "catalog_page_request"})  # type: ignore[arg-type]

        assert event["correlation_id"] == "req-42"
        assert "background_task" not in event

    def test_no_correlation_id(self) -> None:
        event = add_correlation_id(None, "info", {"event": "startup"})  # type: ignore[arg-type]

        assert "correlation_id" not in event

    @pytest.mark.asyncio
    async def test_background_task_name(self) -> None:
        set_correlation_id("req-7")

        async def detached() -> dict:
            task_name_ctx.set("cache_usage_bump")
            return add_correlation_id(None, "info", {"event": "cache_hit"})  # type: ignore[arg-type]

        event = await asyncio.create_task(detached())

        assert event["correlation_id"] == "req-7"
        assert event["background_task"] == "cache_usage_bump"
        assert task_name_ctx.get() is None
