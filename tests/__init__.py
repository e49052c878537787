"""
Retrieval SDK tests.

Covers the vector store wrapper, filter translation, ranking, caching and
the pgvector and Chroma backends.
"""
