"""
News RAG Chat Backend

A modular system for ingesting news articles from RSS feeds, embedding them
into a vector index, and answering chat questions grounded in the retrieved
passages with resilient, streaming LLM generation.
"""

__version__ = "0.1.0"
