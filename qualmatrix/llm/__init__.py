"""LLM client, analysis-kind table and prompt templates."""
