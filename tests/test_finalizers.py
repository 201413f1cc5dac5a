"""Unit tests for finalizers.py - Finalizer lifecycle."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from reconcilekit.finalizers import (
    FinalizerRegistration,
    process_finalizer,
    run_finalizers,
)

FINALIZER = "example.com/cleanup"


@pytest.mark.asyncio
class TestProcessFinalizer:
    """Tests for the standalone process_finalizer helper."""

    async def test_adds_missing_finalizer(self, sample_resource):
        finalize = AsyncMock()

        modified = await process_finalizer(sample_resource, FINALIZER, finalize)

        assert modified is True
        assert sample_resource.finalizers == [FINALIZER]
        finalize.assert_not_awaited()

    async def test_present_finalizer_is_noop(self, sample_resource):
        sample_resource.finalizers = [FINALIZER]
        finalize = AsyncMock()

        modified = await process_finalizer(sample_resource, FINALIZER, finalize)

        assert modified is False
        assert sample_resource.finalizers == [FINALIZER]

    async def test_deleting_runs_and_removes(self, deleting_resource):
        finalize = AsyncMock()

        modified = await process_finalizer(deleting_resource, FINALIZER, finalize)

        assert modified is True
        assert deleting_resource.finalizers == []
        finalize.assert_awaited_once()

    async def test_deleting_without_finalizer_is_noop(self, deleting_resource):
        deleting_resource.finalizers = ["other.example.com/keep"]
        finalize = AsyncMock()

        modified = await process_finalizer(deleting_resource, FINALIZER, finalize)

        assert modified is False
        assert deleting_resource.finalizers == ["other.example.com/keep"]
        finalize.assert_not_awaited()

    async def test_failed_cleanup_keeps_finalizer(self, deleting_resource):
        finalize = AsyncMock(side_effect=RuntimeError("bucket still in use"))

        with pytest.raises(RuntimeError, match="bucket still in use"):
            await process_finalizer(deleting_resource, FINALIZER, finalize)

        assert deleting_resource.finalizers == [FINALIZER]


@pytest.mark.asyncio
class TestFinalizerRegistration:
    """Tests for FinalizerRegistration.run."""

    async def test_idempotent_without_deletion(self, sample_resource, client):
        cleanup = AsyncMock()
        registration = FinalizerRegistration(FINALIZER, cleanup)

        first = await registration.run(sample_resource, client)
        second = await registration.run(sample_resource, client)

        assert first is True
        assert second is False
        assert sample_resource.finalizers == [FINALIZER]
        cleanup.assert_not_awaited()

    async def test_deletion_flow_runs_cleanup_once(self, deleting_resource, client):
        cleanup = AsyncMock()
        registration = FinalizerRegistration(FINALIZER, cleanup)

        first = await registration.run(deleting_resource, client)
        second = await registration.run(deleting_resource, client)

        assert first is True
        assert second is False
        assert FINALIZER not in deleting_resource.finalizers
        cleanup.assert_awaited_once_with(deleting_resource, client)

    async def test_cleanup_sees_finalizer_still_attached(
        self, deleting_resource, client
    ):
        seen = []

        async def cleanup(obj, api):
            seen.append(list(obj.finalizers))

        await FinalizerRegistration(FINALIZER, cleanup).run(deleting_resource, client)

        assert seen == [[FINALIZER]]

    async def test_logs_transition(self, sample_resource, client):
        log = MagicMock()

        await FinalizerRegistration(FINALIZER, AsyncMock()).run(
            sample_resource, client, log
        )

        log.debug.assert_called_once()
        assert "Added finalizer" in log.debug.call_args[0][0]


@pytest.mark.asyncio
class TestRunFinalizers:
    """Tests for run_finalizers ordering."""

    async def test_first_mutation_stops_pass(self, sample_resource, client):
        first = FinalizerRegistration("example.com/first", AsyncMock())
        second = FinalizerRegistration("example.com/second", AsyncMock())

        mutated = await run_finalizers([first, second], sample_resource, client)

        assert mutated is True
        assert sample_resource.finalizers == ["example.com/first"]

        mutated = await run_finalizers([first, second], sample_resource, client)

        assert mutated is True
        assert sample_resource.finalizers == ["example.com/first", "example.com/second"]

        mutated = await run_finalizers([first, second], sample_resource, client)

        assert mutated is False

    async def test_deletion_runs_one_cleanup_per_pass(
        self, deleting_resource, client
    ):
        deleting_resource.finalizers = ["example.com/first", "example.com/second"]
        first_cleanup = AsyncMock()
        second_cleanup = AsyncMock()
        registrations = [
            FinalizerRegistration("example.com/first", first_cleanup),
            FinalizerRegistration("example.com/second", second_cleanup),
        ]

        assert await run_finalizers(registrations, deleting_resource, client)
        first_cleanup.assert_awaited_once()
        second_cleanup.assert_not_awaited()
        assert deleting_resource.finalizers == ["example.com/second"]

        assert await run_finalizers(registrations, deleting_resource, client)
        second_cleanup.assert_awaited_once()
        assert deleting_resource.finalizers == []

        assert not await run_finalizers(registrations, deleting_resource, client)
        first_cleanup.assert_awaited_once()

    async def test_no_registrations(self, sample_resource, client):
        assert await run_finalizers([], sample_resource, client) is False
        assert sample_resource.finalizers == []


class TestFinalizerRegistrationValue:
    """Tests for FinalizerRegistration as a value."""

    def test_registration_is_frozen(self):
        registration = FinalizerRegistration(FINALIZER, AsyncMock())
        with pytest.raises(AttributeError):
            registration.finalizer = "other"
