"""Tests for agent-team."""
