"""Core pipeline components: mapping, row sources, staging, join-back and
the orchestrator that drives them."""
