"""
rag_pipeline — Retrieval-Augmented Generation pipeline for halal restaurant search.

Components:
  settings       — environment-driven configuration
  openai_client  — shared OpenAI clients (no SDK retries)
  embedder       — text → vector (OpenAI embeddings)
  vector_index   — Pinecone / Chroma nearest-neighbour index
  retriever      — top-5 restaurant retrieval + context formatting
  llm_engine     — augmented prompt + streamed chat completion
  pipeline       — per-request state machine and chunk relay
  loader         — offline index loading CLI
"""
