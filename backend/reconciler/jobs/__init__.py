"""Scheduled and on-demand reconciliation strategies."""
