"""
Test Retry Policies

Verifies the two tenacity policies used against the Kubernetes API:
- List retry: fixed interval, retries retryable TransportErrors until success
- Conflict retry: bounded attempts, retries ConflictError only
"""

import pytest

from self_service.errors import ConflictError, TransportError, ValidationError
from self_service.retry_config import conflict_retrying, list_retrying


class TestListRetrying:
    """Test list_retrying()."""

    @pytest.mark.asyncio
    async def test_retries_transport_errors_until_success(self):
        call_count = 0

        async for attempt in list_retrying(0.001):
            with attempt:
                call_count += 1
                if call_count < 5:
                    raise TransportError("not listable yet", status=404)

        assert call_count == 5

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        call_count = 0

        with pytest.raises(ValidationError):
            async for attempt in list_retrying(0.001):
                with attempt:
                    call_count += 1
                    raise ValidationError("bad")

        assert call_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403, 422])
    async def test_non_retryable_transport_errors_are_not_retried(self, status):
        call_count = 0

        with pytest.raises(TransportError):
            async for attempt in list_retrying(0.001):
                with attempt:
                    call_count += 1
                    raise TransportError("denied", status=status)

        assert call_count == 1

    @pytest.mark.asyncio
    async def test_error_without_status_is_retried(self):
        call_count = 0

        async for attempt in list_retrying(0.001):
            with attempt:
                call_count += 1
                if call_count == 1:
                    raise TransportError("connection reset")

        assert call_count == 2


class TestConflictRetrying:
    """Test conflict_retrying()."""

    @pytest.mark.asyncio
    async def test_success_after_conflict(self):
        call_count = 0

        async for attempt in conflict_retrying(3):
            with attempt:
                call_count += 1
                if call_count == 1:
                    raise ConflictError("modified")

        assert call_count == 2

    @pytest.mark.asyncio
    async def test_reraises_last_conflict(self):
        call_count = 0

        with pytest.raises(ConflictError):
            async for attempt in conflict_retrying(3):
                with attempt:
                    call_count += 1
                    raise ConflictError("modified")

        assert call_count == 3  # Stopped after max attempts

    @pytest.mark.asyncio
    async def test_transport_errors_are_not_retried(self):
        call_count = 0

        with pytest.raises(TransportError):
            async for attempt in conflict_retrying(3):
                with attempt:
                    call_count += 1
                    raise TransportError("boom", status=500)

        assert call_count == 1
