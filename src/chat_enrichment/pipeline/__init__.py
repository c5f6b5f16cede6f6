"""Staged enrichment pipeline for chat messages.

Jobs flow through a SQLite-backed queue: a worker claims a batch for one
worker group, runs the stage handler for each job, records the terminal
state and enqueues the next stage of the chain for the same entity.

    normalize_message -> embed_message -> annotate_message

Batch job types (``batch_embed``, ``batch_annotate``, ``cluster_semantic``)
are terminal. Mutual exclusion between concurrent workers lives entirely in
the claim primitive of :class:`~chat_enrichment.pipeline.repository.JobRepository`.
"""
