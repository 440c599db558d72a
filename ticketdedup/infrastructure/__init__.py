"""
Infrastructure Layer
=====================

Technical building blocks shared by the bounded contexts:
- database: async SQLAlchemy engine and sessions
- llm: LLM / embedding clients and the concurrency limiter
- vectorstore: Milvus collections for embedding search
"""
