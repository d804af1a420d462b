"""
Ingestion: tokenizing, chunking and embedding documents.

Turns raw documents into embedded chunks ready for a vector store:
:func:`~retrieval_datastore.ingestion.chunker.get_text_chunks` splits text,
:func:`~retrieval_datastore.ingestion.embedder.get_document_chunks` chunks
and embeds whole batches of documents.
"""
