"""Recommendation pipeline: generation, reranking, enrichment, orchestration."""
