"""
rag_pipeline — Retrieval-Augmented Generation pipeline.

Components:
  embedder       — text → vector (OpenAI embeddings or local sentence-transformers)
  vector_client  — record store/query/delete/clear over Pinecone or ChromaDB
  context        — turns retrieved records into one system message
  llm_proxy      — buffered / streamed relay to the chat-completions API
"""
