"""Tests for the cost aggregator."""

import threading

import pytest

from agent_team.cost import CostAggregator, RateTable
from agent_team.models import Usage


class TestCostOf:
	def test_default_rates(self):
		costs = CostAggregator()
		usage = Usage(
			input_tokens=1000,
			output_tokens=1000,
			cache_creation_input_tokens=1000,
			cache_read_input_tokens=1000,
		)
		assert costs.cost_of(usage) == pytest.approx(0.003 + 0.015 + 0.00375 + 0.0003)

	def test_zero_usage_is_free(self):
		assert CostAggregator().cost_of(Usage()) == 0.0

	def test_custom_rates(self):
		costs = CostAggregator(RateTable(input_per_1k=1.0, output_per_1k=2.0))
		assert costs.cost_of(Usage(input_tokens=500, output_tokens=500)) == pytest.approx(1.5)

	def test_rate_table_from_dict_keeps_defaults(self):
		rates = RateTable.from_dict({"output_per_1k": 0.075})
		assert rates.output_per_1k == 0.075
		assert rates.input_per_1k == 0.003


class TestRecordUsage:
	def test_records_and_totals(self):
		costs = CostAggregator()
		record = costs.record_usage("msg-1", Usage(input_tokens=1000))
		assert record is not None
		assert record.cost == pytest.approx(0.003)
		assert costs.total_cost() == pytest.approx(0.003)
		assert costs.total_usage() == Usage(input_tokens=1000)

	def test_duplicate_message_adds_nothing(self):
		costs = CostAggregator()
		costs.record_usage("msg-1", Usage(input_tokens=1000))
		before = costs.total_cost()

		assert costs.record_usage("msg-1", Usage(input_tokens=5000)) is None
		assert costs.total_cost() == before
		assert len(costs.records()) == 1
		assert costs.is_recorded("msg-1")

	def test_total_is_additive(self):
		costs = CostAggregator()
		a = Usage(input_tokens=1200, output_tokens=300)
		b = Usage(output_tokens=800, cache_read_input_tokens=4000)
		costs.record_usage("a", a)
		costs.record_usage("b", b)
		assert costs.total_cost() == pytest.approx(costs.cost_of(a) + costs.cost_of(b))
		assert costs.total_usage() == a + b

	def test_reset_forgets_seen_ids(self):
		costs = CostAggregator()
		costs.record_usage("msg-1", Usage(input_tokens=10))
		costs.reset()
		assert costs.total_cost() == 0.0
		assert costs.record_usage("msg-1", Usage(input_tokens=10)) is not None

	def test_concurrent_duplicates_charged_once(self):
		costs = CostAggregator()
		results = []

		def worker():
			results.append(costs.record_usage("shared", Usage(input_tokens=1000)))

		threads = [threading.Thread(target=worker) for _ in range(16)]
		for t in threads:
			t.start()
		for t in threads:
			t.join()

		assert sum(1 for r in results if r is not None) == 1
		assert costs.total_cost() == pytest.approx(0.003)


class TestSummary:
	def test_summary_fields(self):
		costs = CostAggregator()
		costs.record_usage("a", Usage(input_tokens=1000, output_tokens=1000))
		costs.record_usage("b", Usage(input_tokens=1000))
		summary = costs.summary()
		assert summary["messages"] == 2
		assert summary["total_cost_usd"] == pytest.approx(0.021)
		assert summary["average_cost_usd"] == pytest.approx(0.0105)
		assert summary["input_tokens"] == 2000
		assert summary["output_tokens"] == 1000

	def test_empty_summary(self):
		summary = CostAggregator().summary()
		assert summary["messages"] == 0
		assert summary["average_cost_usd"] == 0.0


class TestUsage:
	def test_from_dict_treats_missing_and_null_as_zero(self):
		usage = Usage.from_dict({"input_tokens": 5, "output_tokens": None})
		assert usage == Usage(input_tokens=5)

	def test_from_none(self):
		assert Usage.from_dict(None) == Usage()

	def test_total_tokens(self):
		assert Usage(1, 2, 3, 4).total_tokens == 10
