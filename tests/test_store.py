"""Tests for document, conversation and settings stores."""

import sqlite3

import pytest

from wali.core.message import Message, Role, SourceRef
from wali.exceptions import NotFoundError, StorageError
from wali.rag.document import Chunk, Document
from wali.store import (
    MemoryConversationStore,
    MemoryDocumentStore,
    MemorySettingsStore,
    SQLiteConversationStore,
    SQLiteDatabase,
    SQLiteDocumentStore,
    SQLiteSettingsStore,
)


@pytest.fixture(params=["memory", "sqlite"])
def stores(request, tmp_path):
    """Document, conversation and settings stores of one backend."""
    if request.param == "memory":
        return MemoryDocumentStore(), MemoryConversationStore(), MemorySettingsStore()
    database = SQLiteDatabase(tmp_path / "db" / "test.db")
    return SQLiteDocumentStore(database), SQLiteConversationStore(database), SQLiteSettingsStore(database)


@pytest.fixture
def documents(stores):
    return stores[0]


@pytest.fixture
def conversations(stores):
    return stores[1]


@pytest.fixture
def settings(stores):
    return stores[2]


class TestDocumentStore:
    @pytest.mark.asyncio
    async def test_put_assigns_id_and_size(self, documents):
        doc = await documents.put(Document(name="policy.txt", content="Refunds in 30 days.", file_type="txt"))

        assert doc.id
        assert doc.file_size == len("Refunds in 30 days.".encode("utf-8"))
        assert doc.created_at is not None
        loaded = await documents.get(doc.id)
        assert loaded.content == "Refunds in 30 days."
        assert loaded.file_type == "txt"

    @pytest.mark.asyncio
    async def test_file_size_counts_utf8_bytes(self, documents):
        doc = await documents.put(Document(name="zh.txt", content="退款政策"))
        assert doc.file_size == 12

    @pytest.mark.asyncio
    async def test_reput_keeps_created_at(self, documents):
        doc = await documents.put(Document(name="a.txt", content="v1"))
        again = await documents.put(doc.model_copy(update={"content": "version two"}))

        assert again.id == doc.id
        assert again.created_at == doc.created_at
        assert again.updated_at >= doc.updated_at
        assert (await documents.get(doc.id)).content == "version two"
        assert len(await documents.list()) == 1

    @pytest.mark.asyncio
    async def test_get_missing(self, documents):
        assert await documents.get("missing") is None

    @pytest.mark.asyncio
    async def test_list_newest_first(self, documents):
        first = await documents.put(Document(name="first.txt", content="1"))
        second = await documents.put(Document(name="second.txt", content="2"))

        summaries = await documents.list()

        assert [s.id for s in summaries] == [second.id, first.id]
        assert summaries[0].file_size == 1

    @pytest.mark.asyncio
    async def test_delete(self, documents):
        doc = await documents.put(Document(name="a.txt", content="text"))
        await documents.put_chunks(doc.id, [Chunk(id="c0", document_id=doc.id, content="text", embedding=[1.0])])

        await documents.delete(doc.id)

        assert await documents.get(doc.id) is None
        assert await documents.list_chunks(doc.id) == []
        with pytest.raises(NotFoundError):
            await documents.delete(doc.id)

    @pytest.mark.asyncio
    async def test_chunks_round_trip_in_position_order(self, documents):
        doc = await documents.put(Document(name="a.txt", content="ab"))
        await documents.put_chunks(doc.id, [
            Chunk(id="c1", document_id=doc.id, content="b", position=1, start_index=1, end_index=2,
                  embedding=[0.0, 1.0], metadata={"model_id": "m"}),
            Chunk(id="c0", document_id=doc.id, content="a", position=0, start_index=0, end_index=1,
                  embedding=[1.0, 0.0], metadata={"model_id": "m"}),
        ])

        chunks = await documents.list_chunks(doc.id)

        assert [c.id for c in chunks] == ["c0", "c1"]
        assert chunks[0].embedding == [1.0, 0.0]
        assert chunks[1].metadata == {"model_id": "m"}
        assert len(await documents.list_chunks()) == 2
        assert await documents.delete_chunks(doc.id) == 2
        assert await documents.list_chunks() == []

    @pytest.mark.asyncio
    async def test_put_chunks_requires_document(self, documents):
        with pytest.raises(NotFoundError):
            await documents.put_chunks("missing", [Chunk(id="c", document_id="missing", content="x")])


class TestConversationStore:
    @pytest.mark.asyncio
    async def test_create_and_get(self, conversations):
        conversation = await conversations.create_conversation("Refund question")
        loaded = await conversations.get_conversation(conversation.id)
        assert loaded.title == "Refund question"
        assert await conversations.get_conversation("missing") is None

    @pytest.mark.asyncio
    async def test_create_with_given_id(self, conversations):
        conversation = await conversations.create_conversation("t", conversation_id="conv-1")
        assert conversation.id == "conv-1"

    @pytest.mark.asyncio
    async def test_create_with_taken_id(self, conversations):
        await conversations.create_conversation("t", conversation_id="conv-1")
        with pytest.raises(StorageError):
            await conversations.create_conversation("again", conversation_id="conv-1")
        assert (await conversations.get_conversation("conv-1")).title == "t"

    @pytest.mark.asyncio
    async def test_append_assigns_id_and_order(self, conversations):
        conversation = await conversations.create_conversation("t")
        refs = [SourceRef(document_id="d1", chunk_id="d1_chunk_0", document_name="a.txt")]

        user = await conversations.append_message(conversation.id, Message.user("question"))
        answer = await conversations.append_message(conversation.id, Message.assistant("answer", refs))

        assert user.id and answer.id and user.id != answer.id
        assert user.conversation_id == conversation.id
        messages = await conversations.list_messages(conversation.id)
        assert [m.role for m in messages] == [Role.USER, Role.ASSISTANT]
        assert messages[1].sources == refs
        assert messages[0].sources == []
        assert messages[0].created_at <= messages[1].created_at

    @pytest.mark.asyncio
    async def test_append_bumps_updated_at(self, conversations):
        conversation = await conversations.create_conversation("t")
        await conversations.append_message(conversation.id, Message.user("q"))
        loaded = await conversations.get_conversation(conversation.id)
        assert loaded.updated_at >= conversation.updated_at

    @pytest.mark.asyncio
    async def test_append_to_missing_conversation(self, conversations):
        with pytest.raises(NotFoundError):
            await conversations.append_message("missing", Message.user("q"))

    @pytest.mark.asyncio
    async def test_list_messages_trailing_window(self, conversations):
        conversation = await conversations.create_conversation("t")
        for i in range(5):
            await conversations.append_message(conversation.id, Message.user(f"q{i}"))

        window = await conversations.list_messages(conversation.id, limit=2)

        assert [m.content for m in window] == ["q3", "q4"]

    @pytest.mark.asyncio
    async def test_list_messages_missing_conversation(self, conversations):
        with pytest.raises(NotFoundError):
            await conversations.list_messages("missing")

    @pytest.mark.asyncio
    async def test_list_conversations_recent_first(self, conversations):
        first = await conversations.create_conversation("first")
        second = await conversations.create_conversation("second")
        await conversations.append_message(first.id, Message.user("bump"))

        listed = await conversations.list_conversations()

        assert [c.id for c in listed] == [first.id, second.id]
        assert len(await conversations.list_conversations(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_delete_cascades(self, conversations):
        conversation = await conversations.create_conversation("t")
        await conversations.append_message(conversation.id, Message.user("q"))

        await conversations.delete_conversation(conversation.id)

        assert await conversations.get_conversation(conversation.id) is None
        with pytest.raises(NotFoundError):
            await conversations.list_messages(conversation.id)
        with pytest.raises(NotFoundError):
            await conversations.delete_conversation(conversation.id)


class TestSettingsStore:
    @pytest.mark.asyncio
    async def test_set_and_get(self, settings):
        assert await settings.get_setting("qwen_api_key") is None
        await settings.set_setting("qwen_api_key", "sk-1")
        await settings.set_setting("qwen_api_key", "sk-2")
        assert await settings.get_setting("qwen_api_key") == "sk-2"


class TestSQLiteDatabase:
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "wali.db"
        store = SQLiteDocumentStore(SQLiteDatabase(path))
        doc = await store.put(Document(name="a.txt", content="kept"))

        reopened = SQLiteDocumentStore(SQLiteDatabase(path))

        assert (await reopened.get(doc.id)).content == "kept"

    @pytest.mark.asyncio
    async def test_sqlite_errors_become_storage_errors(self, tmp_path):
        database = SQLiteDatabase(tmp_path / "wali.db")

        def broken():
            raise sqlite3.OperationalError("disk I/O error")

        with pytest.raises(StorageError):
            await database.run(broken)
