"""Unit tests for the Datastore orchestrator."""

from __future__ import annotations

from typing import Any

import pytest

from retrieval_datastore.datastore import Datastore, InMemoryVectorStore
from retrieval_datastore.errors import BackendError, EmbeddingUnavailable, InvalidDocumentError
from retrieval_datastore.models import (
    Document,
    DocumentChunk,
    DocumentMetadata,
    DocumentMetadataFilter,
    Query,
    QueryResult,
    QueryWithEmbedding,
    Source,
)

from conftest import FakeEmbedder


# ── Recording backend ───────────────────────────────────────────────────


class RecordingStore(InMemoryVectorStore):
    """In-memory store that logs every backend call in order."""

    def __init__(self) -> None:
        super().__init__("test-collection")
        self.log: list[tuple[str, Any]] = []

    def upsert(self, chunks: dict[str, list[DocumentChunk]]) -> list[str]:
        self.log.append(("upsert", {k: [c.id for c in v] for k, v in chunks.items()}))
        return super().upsert(chunks)

    def query(self, queries: list[QueryWithEmbedding]) -> list[QueryResult]:
        self.log.append(("query", [q.query for q in queries]))
        return super().query(queries)

    def delete(
        self,
        ids: list[str] | None = None,
        filter: DocumentMetadataFilter | None = None,
        delete_all: bool = False,
    ) -> bool:
        self.log.append(("delete", {"ids": ids, "filter": filter, "delete_all": delete_all}))
        return super().delete(ids=ids, filter=filter, delete_all=delete_all)


@pytest.fixture()
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture()
def datastore(store: RecordingStore, fake_embed: FakeEmbedder, tokenizer) -> Datastore:
    return Datastore(store, fake_embed, tokenizer)


# ── upsert ──────────────────────────────────────────────────────────────


class TestUpsert:
    def test_returns_document_ids(self, datastore: Datastore, store: RecordingStore) -> None:
        ids = datastore.upsert([Document(id="d1", text="Hello there, world.")])
        assert ids == ["d1"]
        assert [c.id for c in store.chunks] == ["d1_0"]
        assert store.chunks[0].embedding is not None

    def test_accepts_dicts(self, datastore: Datastore) -> None:
        ids = datastore.upsert([{"id": "d1", "text": "Hello there, world.", "metadata": {"source": "chat"}}])
        assert ids == ["d1"]

    def test_generated_id_skips_delete(self, datastore: Datastore, store: RecordingStore) -> None:
        ids = datastore.upsert([Document(text="No id on this document.")])
        assert len(ids) == 1
        assert [entry[0] for entry in store.log] == ["upsert"]

    def test_replace_semantics(self, datastore: Datastore, store: RecordingStore) -> None:
        datastore.upsert([Document(id="d1", text="alpha " * 30)], chunk_size=10)
        assert len(store) == 6
        store.log.clear()

        datastore.upsert([Document(id="d1", text="Completely different text B.")])

        assert [entry[0] for entry in store.log] == ["delete", "upsert"]
        delete_call = store.log[0][1]
        assert delete_call["filter"] == DocumentMetadataFilter(document_id="d1")
        assert delete_call["delete_all"] is False
        assert [c.text for c in store.chunks] == ["Completely different text B."]

    def test_all_deletes_happen_before_insert(self, datastore: Datastore, store: RecordingStore) -> None:
        docs = [Document(id=f"d{i}", text=f"Document number {i} text.") for i in range(10)]
        datastore.upsert(docs)
        kinds = [entry[0] for entry in store.log]
        assert kinds == ["delete"] * 10 + ["upsert"]
        deleted = {entry[1]["filter"].document_id for entry in store.log[:10]}
        assert deleted == {f"d{i}" for i in range(10)}

    def test_duplicate_ids_are_deleted_once(self, datastore: Datastore, store: RecordingStore) -> None:
        datastore.upsert([Document(id="d1", text="First version."), Document(id="d1", text="Second version.")])
        assert [entry[0] for entry in store.log] == ["delete", "upsert"]

    def test_empty_string_id_is_replaced_like_any_other(self, datastore: Datastore, store: RecordingStore) -> None:
        assert datastore.upsert([Document(id="", text="Version A of the document.")]) == [""]
        assert datastore.upsert([Document(id="", text="Version B of the document.")]) == [""]
        assert [(c.id, c.text) for c in store.chunks] == [("_0", "Version B of the document.")]
        assert store.chunks[0].metadata.document_id == ""

    def test_empty_document_is_registered(self, datastore: Datastore, store: RecordingStore) -> None:
        ids = datastore.upsert([Document(id="empty", text="")])
        assert ids == ["empty"]
        assert len(store) == 0

    def test_embedding_failure_aborts_before_insert(self, store: RecordingStore, tokenizer) -> None:
        def broken_embed(texts: list[str]) -> list[list[float]]:
            raise ConnectionError("embedding service down")

        datastore = Datastore(store, broken_embed, tokenizer)
        with pytest.raises(EmbeddingUnavailable):
            datastore.upsert([Document(id="d1", text="Some content here.")])
        # Deletes ran, nothing was inserted: d1 is left empty.
        assert [entry[0] for entry in store.log] == ["delete"]
        assert len(store) == 0

    def test_delete_failure_prevents_insert(self, fake_embed: FakeEmbedder, tokenizer) -> None:
        class FailingDeleteStore(RecordingStore):
            def delete(self, ids=None, filter=None, delete_all=False) -> bool:  # noqa: ANN001
                if filter is not None and filter.document_id == "bad":
                    raise BackendError("delete failed")
                return super().delete(ids=ids, filter=filter, delete_all=delete_all)

        store = FailingDeleteStore()
        datastore = Datastore(store, fake_embed, tokenizer)
        with pytest.raises(BackendError):
            datastore.upsert([Document(id="ok", text="Fine text."), Document(id="bad", text="Other text.")])
        assert not any(entry[0] == "upsert" for entry in store.log)
        assert fake_embed.calls == []

    def test_invalid_document_rejected_before_any_call(self, datastore: Datastore, store: RecordingStore) -> None:
        with pytest.raises(InvalidDocumentError, match="index 1"):
            datastore.upsert([{"id": "d1", "text": "fine"}, {"id": "d2", "text": 123}])
        assert store.log == []

    def test_embeds_in_batches(self, store: RecordingStore, fake_embed: FakeEmbedder, tokenizer) -> None:
        datastore = Datastore(store, fake_embed, tokenizer, embedding_batch_size=4)
        datastore.upsert([Document(id="d1", text="word " * 50)], chunk_size=10)
        assert [len(c) for c in fake_embed.calls] == [4, 4, 2]


# ── metadata extraction / PII screening ────────────────────────────────


class TestCollaborators:
    def test_extracted_metadata_is_applied(self, store: RecordingStore, fake_embed, tokenizer) -> None:
        datastore = Datastore(
            store,
            fake_embed,
            tokenizer,
            metadata_extractor=lambda text: {"source": "fax", "author": "Ann", "junk": 1},
        )
        datastore.upsert([Document(id="d1", text="A memo written by Ann.")])
        metadata = store.chunks[0].metadata
        assert metadata.author == "Ann"
        assert metadata.source is None
        assert metadata.document_id == "d1"

    def test_existing_metadata_is_not_overwritten(self, store: RecordingStore, fake_embed, tokenizer) -> None:
        calls = []

        def extractor(text: str) -> dict:
            calls.append(text)
            return {"author": "LLM"}

        datastore = Datastore(store, fake_embed, tokenizer, metadata_extractor=extractor)
        datastore.upsert([Document(id="d1", text="Some text here.", metadata=DocumentMetadata(author="Bob"))])
        assert calls == []
        assert store.chunks[0].metadata.author == "Bob"

    @pytest.mark.parametrize("reply", [None, "not a dict", ["list"]])
    def test_malformed_extractor_output_does_not_abort(self, reply, store, fake_embed, tokenizer) -> None:
        datastore = Datastore(store, fake_embed, tokenizer, metadata_extractor=lambda text: reply)
        assert datastore.upsert([Document(id="d1", text="Some text here.")]) == ["d1"]
        assert store.chunks[0].metadata.author is None

    def test_extractor_exception_does_not_abort(self, store, fake_embed, tokenizer) -> None:
        def extractor(text: str) -> dict:
            raise RuntimeError("LLM down")

        datastore = Datastore(store, fake_embed, tokenizer, metadata_extractor=extractor)
        assert datastore.upsert([Document(id="d1", text="Some text here.")]) == ["d1"]

    def test_pii_flagged_documents_are_skipped(self, store: RecordingStore, fake_embed, tokenizer) -> None:
        datastore = Datastore(store, fake_embed, tokenizer, pii_screener=lambda text: "@" in text)
        ids = datastore.upsert(
            [
                Document(id="clean", text="Nothing personal in here."),
                Document(id="pii", text="Mail me at jane@example.com today."),
            ]
        )
        assert ids == ["clean"]
        deleted = [entry[1]["filter"].document_id for entry in store.log if entry[0] == "delete"]
        assert deleted == ["clean"]

    def test_pii_screener_failure_skips_document(self, store: RecordingStore, fake_embed, tokenizer) -> None:
        def screener(text: str) -> bool:
            raise RuntimeError("LLM down")

        datastore = Datastore(store, fake_embed, tokenizer, pii_screener=screener)
        assert datastore.upsert([Document(id="d1", text="Some text here.")]) == []


# ── query ───────────────────────────────────────────────────────────────


class TestQuery:
    def test_top_k_and_ordering(self, datastore: Datastore) -> None:
        datastore.upsert(
            [Document(id=f"d{i}", text=f"Document {i} " + "content " * (i + 3)) for i in range(5)]
        )
        results = datastore.query([{"query": "hello", "top_k": 2}])
        assert len(results) == 1
        assert results[0].query == "hello"
        assert len(results[0].results) <= 2
        scores = [r.score for r in results[0].results]
        assert scores == sorted(scores, reverse=True)

    def test_one_result_per_query_in_order(self, datastore: Datastore, fake_embed: FakeEmbedder) -> None:
        datastore.upsert([Document(id="d1", text="Some searchable content.")])
        queries = [Query(query=f"question {i}") for i in range(5)]
        results = datastore.query(queries)
        assert [r.query for r in results] == [f"question {i}" for i in range(5)]
        assert fake_embed.calls[-1] == [f"question {i}" for i in range(5)]

    def test_default_top_k_is_three(self, datastore: Datastore) -> None:
        datastore.upsert([Document(id=f"d{i}", text=f"Searchable document {i}.") for i in range(5)])
        assert len(datastore.query([{"query": "find"}])[0].results) == 3

    def test_filter_is_forwarded(self, datastore: Datastore) -> None:
        datastore.upsert(
            [
                Document(id="mail", text="An email message.", metadata=DocumentMetadata(source=Source.email)),
                Document(id="chat", text="A chat transcript.", metadata=DocumentMetadata(source=Source.chat)),
            ]
        )
        results = datastore.query([{"query": "message", "filter": {"source": "chat"}, "top_k": 5}])
        assert [r.metadata.document_id for r in results[0].results] == ["chat"]

    def test_empty_queries(self, datastore: Datastore, fake_embed: FakeEmbedder) -> None:
        assert datastore.query([]) == []
        assert fake_embed.calls == []

    def test_invalid_query(self, datastore: Datastore) -> None:
        with pytest.raises(InvalidDocumentError):
            datastore.query([{"query": "x", "top_k": 0}])

    def test_backend_result_count_mismatch(self, fake_embed: FakeEmbedder, tokenizer) -> None:
        class ShortStore(RecordingStore):
            def query(self, queries):  # noqa: ANN001
                return []

        datastore = Datastore(ShortStore(), fake_embed, tokenizer)
        with pytest.raises(BackendError):
            datastore.query([{"query": "x"}])


# ── delete ──────────────────────────────────────────────────────────────


class TestDelete:
    @pytest.fixture()
    def populated(self, datastore: Datastore) -> Datastore:
        datastore.upsert(
            [
                Document(id="a", text="Alpha document text.", metadata=DocumentMetadata(author="ann")),
                Document(id="b", text="Beta document text.", metadata=DocumentMetadata(author="bob")),
                Document(id="c", text="Gamma document text.", metadata=DocumentMetadata(author="cat")),
            ]
        )
        return datastore

    def _remaining(self, store: RecordingStore) -> set[str]:
        return {c.metadata.document_id for c in store.chunks}

    def test_requires_a_selector(self, datastore: Datastore) -> None:
        with pytest.raises(ValueError):
            datastore.delete()
        with pytest.raises(ValueError):
            datastore.delete(ids=[], filter={})

    def test_delete_by_ids(self, populated: Datastore, store: RecordingStore) -> None:
        assert populated.delete(ids=["a"]) is True
        assert self._remaining(store) == {"b", "c"}

    def test_delete_by_filter(self, populated: Datastore, store: RecordingStore) -> None:
        populated.delete(filter={"author": "bob"})
        assert self._remaining(store) == {"a", "c"}

    def test_ids_and_filter_delete_the_union(self, populated: Datastore, store: RecordingStore) -> None:
        populated.delete(ids=["a"], filter=DocumentMetadataFilter(author="bob"))
        assert self._remaining(store) == {"c"}

    def test_delete_all_takes_precedence(self, populated: Datastore, store: RecordingStore) -> None:
        store.log.clear()
        populated.delete(ids=["a"], filter={"author": "bob"}, delete_all=True)
        assert len(store) == 0
        assert store.log == [("delete", {"ids": None, "filter": None, "delete_all": True})]

    def test_invalid_filter(self, populated: Datastore) -> None:
        with pytest.raises(InvalidDocumentError):
            populated.delete(filter={"source": "fax"})


def test_health_check(datastore: Datastore) -> None:
    assert datastore.health_check() is True
