"""
Token usage accounting.

Converts engine usage counters into a monetary cost and keeps a ledger of
charged messages. Each message id is charged at most once, so a terminal
engine message observed twice never doubles the bill.

Usage:
	costs = CostAggregator()
	entry = costs.record_usage("msg_01", Usage(input_tokens=1200, output_tokens=300))
	costs.record_usage("msg_01", ...)  # duplicate, returns None
	print(costs.total_cost())
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .models import Usage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateTable:
	"""USD per 1,000 tokens for each usage counter."""
	input_per_1k: float = 0.003
	output_per_1k: float = 0.015
	cache_write_per_1k: float = 0.00375
	cache_read_per_1k: float = 0.0003

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> "RateTable":
		known = {k: float(v) for k, v in data.items() if k in cls.__dataclass_fields__}
		return cls(**known)


@dataclass(frozen=True)
class UsageRecord:
	"""One charged message."""
	message_id: str
	usage: Usage
	cost: float
	timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


class CostAggregator:
	"""Ledger of charged usage, deduplicated by message id."""

	def __init__(self, rates: Optional[RateTable] = None):
		self.rates = rates or RateTable()
		self._records: list[UsageRecord] = []
		self._seen: set[str] = set()
		self._lock = threading.Lock()

	def cost_of(self, usage: Usage) -> float:
		"""Weighted sum of the four counters."""
		r = self.rates
		return (
			usage.input_tokens / 1000 * r.input_per_1k
			+ usage.output_tokens / 1000 * r.output_per_1k
			+ usage.cache_creation_input_tokens / 1000 * r.cache_write_per_1k
			+ usage.cache_read_input_tokens / 1000 * r.cache_read_per_1k
		)

	def record_usage(self, message_id: str, usage: Usage) -> Optional[UsageRecord]:
		"""
		Charge a message.

		Returns:
			The new ledger entry, or None if message_id was already charged.
		"""
		with self._lock:
			if message_id in self._seen:
				logger.debug(f"Skipping already charged message {message_id}")
				return None
			self._seen.add(message_id)
			record = UsageRecord(message_id=message_id, usage=usage, cost=self.cost_of(usage))
			self._records.append(record)

		logger.debug(f"Charged message {message_id}: ${record.cost:.6f}")
		return record

	def is_recorded(self, message_id: str) -> bool:
		with self._lock:
			return message_id in self._seen

	def total_cost(self) -> float:
		with self._lock:
			return sum(r.cost for r in self._records)

	def total_usage(self) -> Usage:
		with self._lock:
			total = Usage()
			for r in self._records:
				total = total + r.usage
			return total

	def records(self) -> list[UsageRecord]:
		with self._lock:
			return list(self._records)

	def reset(self) -> None:
		with self._lock:
			self._records.clear()
			self._seen.clear()
		logger.debug("Cost ledger reset")

	def summary(self) -> dict[str, Any]:
		"""Summary dict for logging and display."""
		records = self.records()
		total = sum(r.cost for r in records)
		usage = self.total_usage()
		return {
			"messages": len(records),
			"total_cost_usd": round(total, 6),
			"average_cost_usd": round(total / max(len(records), 1), 6),
			**usage.to_dict(),
		}
