"""Metadata persistence for the documents API."""

from .document_store import DocumentStore

__all__ = ['DocumentStore']
