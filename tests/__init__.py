"""Tests for business-orchestrator."""
