"""
Live match state reconciliation.
Keeps persisted match status, minute and score in step with the provider feed
through conditional per-field-group writes, and derives the live event stream
(goals, cards, substitutions, score changes) from the same deltas.
"""
