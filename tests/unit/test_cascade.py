"""Unit tests for the multi-tier extraction cascade."""
import json

import pytest

from entity_indexer.errors.exceptions import LLMError, LLMTimeoutError
from entity_indexer.models.extraction import CascadeTier
from entity_indexer.models.result import FailureReason
from entity_indexer.services.extraction.cascade import (
    DEFAULT_STRATEGIES,
    ExtractionCascade,
    strategies_with_caps,
)
from entity_indexer.services.llm.client import MockLLMClient
from entity_indexer.services.llm.prompts import MIN_SCHEMA, STRICT_JSON_HINT, TINY_SCHEMA

from tests.helpers import P1_REPLY, TRUNCATED_REPLY, make_cascade, make_product


class TestCascadeTiers:
    """Test escalation through the tiers."""

    @pytest.mark.asyncio
    async def test_full_tier_success(self, product):
        """A valid first reply stops the cascade at ATTEMPT_FULL."""
        client = MockLLMClient([P1_REPLY])
        outcome = await make_cascade(client).run(product)

        assert outcome.ok
        assert outcome.tier == CascadeTier.ATTEMPT_FULL
        assert [e.name for e in outcome.extraction.entities] == ["Niacinamide", "Zinc PCA"]
        assert len(client.calls) == 1
        assert client.calls[0].response_schema is None
        assert outcome.failures == {}
        assert outcome.reason is None

    @pytest.mark.asyncio
    async def test_invalid_json_escalates_to_minimal(self, product):
        """Unparseable output moves on to the minimal-schema tier."""
        client = MockLLMClient(["Sorry, I cannot help with that.", P1_REPLY])
        outcome = await make_cascade(client).run(product)

        assert outcome.tier == CascadeTier.ATTEMPT_MINIMAL
        assert outcome.failures == {"attempt_full": "invalid_json"}
        assert client.calls[1].response_schema == MIN_SCHEMA
        assert client.calls[1].system_hint == STRICT_JSON_HINT

    @pytest.mark.asyncio
    async def test_schema_invalid_escalates_to_tiny(self, product):
        client = MockLLMClient(['{"entities": []}', '{"product": {}}', P1_REPLY])
        outcome = await make_cascade(client).run(product)

        assert outcome.tier == CascadeTier.ATTEMPT_TINY
        assert outcome.failures == {
            "attempt_full": "schema_invalid",
            "attempt_minimal": "schema_invalid",
        }
        assert client.calls[2].response_schema == TINY_SCHEMA

    @pytest.mark.asyncio
    async def test_empty_entities_is_success(self, product):
        """A valid reply with no entities is still a model result."""
        client = MockLLMClient(['{"product": {"id": "p1"}, "entities": []}'])
        outcome = await make_cascade(client).run(product)

        assert outcome.tier == CascadeTier.ATTEMPT_FULL
        assert outcome.extraction.entities == []

    @pytest.mark.asyncio
    async def test_fenced_reply_recovered(self, product):
        client = MockLLMClient([f"```json\n{P1_REPLY}\n```"])
        outcome = await make_cascade(client).run(product)
        assert outcome.tier == CascadeTier.ATTEMPT_FULL


class TestCascadeFailures:
    """Test timeouts, errors and salvage."""

    @pytest.mark.asyncio
    async def test_transport_timeouts(self, product):
        """Every tier timing out leaves the outcome empty with reason timeout."""
        client = MockLLMClient([LLMTimeoutError("upstream timed out")])
        outcome = await make_cascade(client).run(product)

        assert not outcome.ok
        assert outcome.tier is None
        assert outcome.reason == FailureReason.TIMEOUT
        assert len(outcome.attempts) == 3
        assert set(outcome.failures.values()) == {"timeout"}

    @pytest.mark.asyncio
    async def test_slow_reply_bounded_by_timeout(self, product):
        """A reply slower than the per-attempt bound counts as a timeout."""
        client = MockLLMClient([P1_REPLY], delay=0.5)
        outcome = await make_cascade(client, timeout=0.05).run(product)

        assert not outcome.ok
        assert outcome.reason == FailureReason.TIMEOUT
        assert all(a.elapsed_ms < 500 for a in outcome.attempts)
        assert client.in_flight == 0

    @pytest.mark.asyncio
    async def test_client_error_captured(self, product):
        """Transport errors never escape the cascade."""
        client = MockLLMClient([LLMError("HTTP 400", status_code=400)])
        outcome = await make_cascade(client).run(product)

        assert not outcome.ok
        assert outcome.reason == FailureReason.ERROR
        assert "LLMError" in outcome.attempts[0].errors[0]

    @pytest.mark.asyncio
    async def test_truncated_reply_salvaged(self, product):
        """Complete name/type pairs in a cut-off reply are salvaged."""
        client = MockLLMClient([TRUNCATED_REPLY])
        outcome = await make_cascade(client).run(product)

        assert outcome.ok
        assert outcome.tier == CascadeTier.SALVAGE
        assert [(e.name, e.type) for e in outcome.extraction.entities] == [("Niacinamide", "ingredient")]
        assert outcome.extraction.product.id == "p1"
        assert outcome.reason == FailureReason.INVALID_JSON

    @pytest.mark.asyncio
    async def test_salvage_uses_longest_reply(self, product):
        client = MockLLMClient([
            TRUNCATED_REPLY,
            "nope",
            "still nope",
        ])
        outcome = await make_cascade(client).run(product)
        assert outcome.tier == CascadeTier.SALVAGE
        assert outcome.best_raw_text == TRUNCATED_REPLY

    @pytest.mark.asyncio
    async def test_raw_text_capped(self, product):
        """Only the diagnostic copy is capped; the whole reply is kept."""
        client = MockLLMClient(["x" * 20000])
        outcome = await make_cascade(client).run(product)
        assert all(len(a.raw_text) == 8000 for a in outcome.attempts)
        assert all(len(a.response_text) == 20000 for a in outcome.attempts)
        assert outcome.attempts[0].to_dict()["response_chars"] == 20000

    @pytest.mark.asyncio
    async def test_long_valid_reply_parsed_whole(self, product):
        """A valid reply longer than the diagnostic cap succeeds at the first tier."""
        reply = json.dumps({
            "product": {"id": "p1"},
            "entities": [
                {"name": f"Ingredient {i}", "type": "ingredient", "fact": "f" * 200}
                for i in range(40)
            ],
        })
        assert len(reply) > 8000
        client = MockLLMClient([reply])
        outcome = await make_cascade(client).run(product)

        assert outcome.tier == CascadeTier.ATTEMPT_FULL
        assert len(outcome.extraction.entities) == 40
        assert all(e.fact == "f" * 200 for e in outcome.extraction.entities)
        assert outcome.failures == {}

    @pytest.mark.asyncio
    async def test_salvage_scans_past_diagnostic_cap(self, product):
        """Entities after the first 8000 characters of a cut-off reply are salvaged."""
        reply = (
            '{"product":{"id":"p1"},"summary":"' + "a" * 9000
            + '","entities":[{"name":"Niacinamide","type":"ingredient"'
        )
        client = MockLLMClient([reply])
        outcome = await make_cascade(client).run(product)

        assert outcome.tier == CascadeTier.SALVAGE
        assert [e.name for e in outcome.extraction.entities] == ["Niacinamide"]


class TestCascadeConfiguration:
    """Test backoff and strategy configuration."""

    @pytest.mark.asyncio
    async def test_jittered_backoff_between_tiers(self, product):
        """Pauses happen between tiers only, within backoff ± jitter."""
        pauses = []

        async def fake_sleep(seconds):
            pauses.append(seconds)

        client = MockLLMClient(["nope"])
        cascade = ExtractionCascade(client, timeout=1.0, backoff=0.4, jitter=0.5, sleep=fake_sleep)
        await cascade.run(product)

        assert len(pauses) == 2
        assert all(0.2 <= p <= 0.6 for p in pauses)

    @pytest.mark.asyncio
    async def test_no_pause_after_success(self, product):
        pauses = []

        async def fake_sleep(seconds):
            pauses.append(seconds)

        cascade = ExtractionCascade(MockLLMClient([P1_REPLY]), sleep=fake_sleep)
        await cascade.run(product)
        assert pauses == []

    @pytest.mark.asyncio
    async def test_description_budget_per_tier(self):
        """Each tier sees a shorter description."""
        long_product = make_product(description="word " * 400)
        client = MockLLMClient(["nope"])
        cascade = ExtractionCascade(
            client,
            strategies=strategies_with_caps([300, 100, 20]),
            timeout=1.0,
            backoff=0,
        )
        await cascade.run(long_product)

        assert "word " * 60 in client.calls[0].prompt
        assert "word " * 60 not in client.calls[1].prompt
        assert "word " * 20 in client.calls[1].prompt
        assert "word " * 20 not in client.calls[2].prompt

    def test_strategies_with_caps(self):
        strategies = strategies_with_caps([1000, 500, 250])
        assert [s.description_cap for s in strategies] == [1000, 500, 250]
        assert [s.tier for s in strategies] == [s.tier for s in DEFAULT_STRATEGIES]

    def test_strategies_with_caps_length_mismatch(self):
        with pytest.raises(ValueError):
            strategies_with_caps([900, 600])
