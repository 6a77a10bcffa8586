"""Tests for the re-hydration coordinator (debounce, stale responses, errors)."""

import asyncio

import pytest
from conftest import ScriptedRuleProvider, make_form, text_field

from forms_mcp.engine import (
    RehydrationCoordinator,
    RehydrationState,
    RuleDelta,
    RuleProviderError,
    SchemaCompileError,
    resolve_references,
)


@pytest.fixture
def resolved(sub_forms):
    return resolve_references(
        make_form(
            {
                "id": "main",
                "fields": [text_field("country", isDiscriminant=True), text_field("name")],
            },
            {"id": "home", "subFormRef": "address"},
        ),
        sub_forms,
    )


@pytest.fixture
def by_country(country_delta):
    """US contexts get the ZIP rules, every other context an empty delta."""

    def respond(context):
        return country_delta if context.get("country") == "US" else RuleDelta()

    return respond


class TestRehydrationCycle:
    async def test_discriminant_change_applies_rules(self, resolved, by_country) -> None:
        provider = ScriptedRuleProvider(by_country)
        coordinator = RehydrationCoordinator(resolved, provider, debounce_ms=0)

        assert coordinator.snapshot.schema.validate({"zip": "1"}) == []
        sequence = coordinator.on_values_changed({"country": "US", "name": "Ada"})
        await coordinator.wait_idle()

        assert sequence == 1
        assert provider.calls == [{"country": "US"}]
        snapshot = coordinator.snapshot
        assert snapshot.sequence == 1
        assert snapshot.case_context == {"country": "US"}
        assert [issue.code for issue in snapshot.schema.validate({"zip": "1"})] == ["pattern"]
        assert snapshot.descriptor.get_block("address-block").status.hidden == (
            "{{isEmpty country}}"
        )

    async def test_non_discriminant_change_is_ignored(self, resolved, by_country) -> None:
        provider = ScriptedRuleProvider(by_country)
        coordinator = RehydrationCoordinator(
            resolved, provider, case_context={"country": "FR"}, debounce_ms=0
        )

        assert coordinator.on_values_changed({"country": "FR", "name": "changed"}) is None
        await coordinator.wait_idle()
        assert provider.calls == []
        assert coordinator.state is RehydrationState.IDLE

    async def test_base_descriptor_is_untouched(self, resolved, by_country) -> None:
        before = resolved.to_dict()
        coordinator = RehydrationCoordinator(
            resolved, ScriptedRuleProvider(by_country), debounce_ms=0
        )
        coordinator.submit({"country": "US"})
        await coordinator.wait_idle()
        assert resolved.to_dict() == before

    async def test_state_transitions_and_snapshot_callback(self, resolved, by_country) -> None:
        states: list[RehydrationState] = []
        snapshots = []
        coordinator = RehydrationCoordinator(
            resolved,
            ScriptedRuleProvider(by_country),
            debounce_ms=0,
            on_snapshot=snapshots.append,
            on_state_change=states.append,
        )
        coordinator.submit({"country": "US"})
        await coordinator.wait_idle()

        assert states == [
            RehydrationState.PENDING_DEBOUNCE,
            RehydrationState.FETCHING,
            RehydrationState.APPLYING,
            RehydrationState.IDLE,
        ]
        assert [snapshot.sequence for snapshot in snapshots] == [1]


class TestDebounce:
    async def test_rapid_submissions_collapse(self, resolved, by_country) -> None:
        """Only the last context of a burst reaches the provider."""
        provider = ScriptedRuleProvider(by_country)
        coordinator = RehydrationCoordinator(resolved, provider, debounce_ms=50)

        for country in ("FR", "DE", "US"):
            coordinator.submit({"country": country})
        await coordinator.wait_idle()

        assert provider.calls == [{"country": "US"}]
        assert coordinator.sequence == 3
        assert coordinator.snapshot.sequence == 3


class TestStaleResponses:
    async def test_older_response_arriving_last_is_discarded(self, resolved, by_country) -> None:
        provider = ScriptedRuleProvider(by_country, delays=[0.1, 0.0])
        coordinator = RehydrationCoordinator(resolved, provider, debounce_ms=0)

        coordinator.submit({"country": "FR"})
        await asyncio.sleep(0.02)
        assert coordinator.state is RehydrationState.FETCHING
        coordinator.submit({"country": "US"})
        await coordinator.wait_idle()

        assert [call["country"] for call in provider.calls] == ["FR", "US"]
        assert coordinator.discarded == 1
        assert coordinator.snapshot.sequence == 2
        assert coordinator.snapshot.case_context == {"country": "US"}

    async def test_superseded_response_arriving_first_is_discarded(
        self, resolved, by_country
    ) -> None:
        provider = ScriptedRuleProvider(by_country, delays=[0.05, 0.1])
        applied = []
        coordinator = RehydrationCoordinator(
            resolved, provider, debounce_ms=0, on_snapshot=applied.append
        )

        coordinator.submit({"country": "US"})
        await asyncio.sleep(0.01)
        coordinator.submit({"country": "FR"})
        await coordinator.wait_idle()

        assert [snapshot.sequence for snapshot in applied] == [2]
        assert coordinator.discarded == 1
        assert coordinator.snapshot.case_context == {"country": "FR"}


class TestFailures:
    async def test_provider_error_keeps_previous_snapshot(self, resolved) -> None:
        def fail(context):
            raise RuleProviderError("Rule provider answered HTTP 503", status_code=503)

        coordinator = RehydrationCoordinator(resolved, ScriptedRuleProvider(fail), debounce_ms=0)
        coordinator.submit({"country": "US"})
        await coordinator.wait_idle()

        assert isinstance(coordinator.last_error, RuleProviderError)
        assert coordinator.last_error.status_code == 503
        assert coordinator.snapshot.sequence == 0
        assert coordinator.state is RehydrationState.IDLE

    async def test_malformed_delta_rule_is_reported(self, resolved) -> None:
        bad = RuleDelta.model_validate({"fields": [{"id": "zip", "validation": [{"type": "x"}]}]})
        coordinator = RehydrationCoordinator(
            resolved, ScriptedRuleProvider(lambda context: bad), debounce_ms=0
        )
        coordinator.submit({"country": "US"})
        await coordinator.wait_idle()

        assert isinstance(coordinator.last_error, SchemaCompileError)
        assert coordinator.snapshot.sequence == 0

    async def test_success_clears_previous_error(self, resolved, by_country) -> None:
        results = iter([RuleProviderError("boom"), None])

        def flaky(context):
            error = next(results)
            if error is not None:
                raise error
            return by_country(context)

        coordinator = RehydrationCoordinator(resolved, ScriptedRuleProvider(flaky), debounce_ms=0)
        coordinator.submit({"country": "US"})
        await coordinator.wait_idle()
        assert coordinator.last_error is not None

        coordinator.submit({"country": "US"})
        await coordinator.wait_idle()
        assert coordinator.last_error is None
        assert coordinator.snapshot.sequence == 2

    async def test_failed_context_is_fetched_again(self, resolved, by_country) -> None:
        """After a failed fetch the same discriminant values trigger a new request."""
        results = iter([RuleProviderError("transient"), None])

        def flaky(context):
            error = next(results)
            if error is not None:
                raise error
            return by_country(context)

        provider = ScriptedRuleProvider(flaky)
        coordinator = RehydrationCoordinator(resolved, provider, debounce_ms=0)

        assert coordinator.on_values_changed({"country": "US"}) == 1
        await coordinator.wait_idle()
        assert coordinator.last_error is not None
        assert coordinator.case_context == coordinator.snapshot.case_context == {}

        assert coordinator.on_values_changed({"country": "US"}) == 2
        await coordinator.wait_idle()
        assert len(provider.calls) == 2
        assert coordinator.last_error is None
        assert coordinator.case_context == {"country": "US"}

    async def test_close_cancels_in_flight_request(self, resolved, by_country) -> None:
        provider = ScriptedRuleProvider(by_country, delays=[5.0])
        coordinator = RehydrationCoordinator(resolved, provider, debounce_ms=0)

        coordinator.submit({"country": "US"})
        await asyncio.sleep(0.01)
        await coordinator.close()

        assert coordinator.state is RehydrationState.IDLE
        assert coordinator.snapshot.sequence == 0
        assert len(provider.calls) == 1
