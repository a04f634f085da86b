"""Execution engine for execute jobs.

Architecture (bottom-up):
- db: SQLite/Postgres access with raw SQL
- storage: Exclusive-create file storage for artifacts
- contribution_store: Persist contributions, load them back as source documents
- continuation: Bounded continuation loop around a provider adapter
- context_compression: Fit prompts into the model's input budget
- prompt_assembler: Render stage prompts for an isolated task
- execute: One execute job end to end (call, write, persist, chain)
"""
