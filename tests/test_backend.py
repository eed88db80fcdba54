"""End-to-end tests for the command backend."""

import asyncio

import pytest

from conftest import KeyedEmbedding, PoisonedEmbedding, ScriptedProvider
from wali.backend import API_KEY_SETTING, create_embedding, create_provider
from wali.exceptions import GenerationError, NotFoundError
from wali.providers import DashScopeProvider
from wali.rag import DashScopeEmbedding, FakeEmbedding
from wali.utils.config import Credentials, WaliConfig


class TestDocuments:
    @pytest.mark.asyncio
    async def test_upload_ask_scenario(self, make_backend):
        backend = await make_backend()
        content = "Refunds are processed within 30 days."

        upload = await backend.upload_document("policy.txt", content)

        assert upload.success
        documents = await backend.get_documents()
        assert [d.name for d in documents] == ["policy.txt"]
        assert documents[0].file_size == len(content.encode("utf-8"))

        answer = await backend.ask_question("How long do refunds take?")

        assert answer.success
        assert upload.document_id in answer.sources
        assert answer.conversation_id
        assert [c.id for c in await backend.get_conversations()] == [answer.conversation_id]

    @pytest.mark.asyncio
    async def test_upload_validation(self, make_backend, config):
        backend = await make_backend()

        assert not (await backend.upload_document("", "text")).success
        assert not (await backend.upload_document("a.txt", "   ")).success
        assert not (await backend.upload_document("a.exe", "text", "exe")).success
        assert (await backend.upload_document("a.md", "text", ".MD")).success

        small = await make_backend(config=config.model_copy(update={"max_upload_bytes": 4}))
        result = await small.upload_document("big.txt", "12345")
        assert not result.success
        assert "too large" in result.message

    @pytest.mark.asyncio
    async def test_upload_requires_api_key(self, make_backend):
        backend = await make_backend(embedding=KeyedEmbedding())

        result = await backend.upload_document("a.txt", "text")

        assert not result.success
        assert result.document_id is None
        assert await backend.get_documents() == []

    @pytest.mark.asyncio
    async def test_partial_upload(self, make_backend):
        backend = await make_backend(embedding=PoisonedEmbedding())

        result = await backend.upload_document("mixed.txt", "Good part.\n\nPOISON part.")

        assert result.success
        assert result.chunks == 1
        assert result.failed_chunks == 1
        assert "failed" in result.message

    @pytest.mark.asyncio
    async def test_failed_upload_leaves_no_document(self, make_backend):
        backend = await make_backend(embedding=PoisonedEmbedding())

        result = await backend.upload_document("bad.txt", "POISON only.")

        assert not result.success
        assert await backend.get_documents() == []

    @pytest.mark.asyncio
    async def test_delete_document(self, make_backend):
        backend = await make_backend()
        upload = await backend.upload_document("policy.txt", "Refunds are processed within 30 days.")

        assert await backend.delete_document(upload.document_id) is True
        assert await backend.delete_document(upload.document_id) is False

        assert await backend.get_documents() == []
        assert await backend.documents.list_chunks(upload.document_id) == []
        answer = await backend.ask_question("How long do refunds take?")
        assert answer.sources == []

    @pytest.mark.asyncio
    async def test_index_survives_restart(self, make_backend):
        backend = await make_backend()
        upload = await backend.upload_document("policy.txt", "Refunds are processed within 30 days.")

        restarted = await make_backend()
        answer = await restarted.ask_question("How long do refunds take?")

        assert answer.sources == [upload.document_id]

    @pytest.mark.asyncio
    async def test_upload_from_path(self, make_backend, tmp_path):
        backend = await make_backend()
        path = tmp_path / "handbook.md"
        path.write_text("# Handbook\n\nVacation is 20 days.", encoding="utf-8")

        result = await backend.upload_document_from_path(str(path))

        assert result.success
        documents = await backend.get_documents()
        assert documents[0].name == "handbook.md"
        assert documents[0].file_type == "md"

    @pytest.mark.asyncio
    async def test_upload_from_missing_path(self, make_backend, tmp_path):
        backend = await make_backend()
        result = await backend.upload_document_from_path(str(tmp_path / "missing.txt"))
        assert not result.success


class TestConversations:
    @pytest.mark.asyncio
    async def test_delete_missing_conversation(self, make_backend):
        backend = await make_backend()
        assert await backend.delete_conversation("missing") is False

    @pytest.mark.asyncio
    async def test_delete_conversation(self, make_backend):
        backend = await make_backend()
        answer = await backend.ask_question("question")

        assert await backend.delete_conversation(answer.conversation_id) is True

        assert await backend.get_conversations() == []
        with pytest.raises(NotFoundError):
            await backend.get_messages(answer.conversation_id)

    @pytest.mark.asyncio
    async def test_follow_up_uses_same_conversation(self, make_backend):
        backend = await make_backend()
        first = await backend.ask_question("first")
        second = await backend.ask_question("second", first.conversation_id)

        assert second.conversation_id == first.conversation_id
        assert len(await backend.get_messages(first.conversation_id)) == 4

    @pytest.mark.asyncio
    async def test_timeouts_on_all_retries(self, make_backend, config):
        provider = ScriptedProvider(delays=[1.0, 1.0])
        backend = await make_backend(
            provider=provider,
            config=config.model_copy(update={"max_attempts": 2, "generation_timeout": 0.01}),
        )
        await backend.upload_document("policy.txt", "Refunds are processed within 30 days.")

        answer = await backend.ask_question("How long do refunds take?")

        assert not answer.success
        assert answer.sources == []
        messages = await backend.get_messages(answer.conversation_id)
        assert [m.content for m in messages] == ["How long do refunds take?"]

    @pytest.mark.asyncio
    async def test_dangling_sources_are_omitted(self, make_backend):
        backend = await make_backend()
        upload = await backend.upload_document("policy.txt", "Refunds are processed within 30 days.")
        answer = await backend.ask_question("How long do refunds take?")

        await backend.delete_document(upload.document_id)
        messages = await backend.get_messages(answer.conversation_id)

        assert len(messages) == 2
        assert messages[1].sources == []

    @pytest.mark.asyncio
    async def test_document_deleted_during_generation_is_not_cited(self, make_backend):
        gate = asyncio.Event()
        backend = await make_backend(provider=ScriptedProvider(gate=gate))
        upload = await backend.upload_document("policy.txt", "Refunds are processed within 30 days.")

        task = asyncio.create_task(backend.ask_question("How long do refunds take?"))
        while not backend.orchestrator.provider.calls and not task.done():
            await asyncio.sleep(0)
        assert await backend.delete_document(upload.document_id) is True
        gate.set()
        answer = await task

        assert answer.success
        assert answer.sources == []
        rows = await backend.conversations.list_messages(answer.conversation_id)
        assert rows[1].sources == []

    @pytest.mark.asyncio
    async def test_get_messages_keeps_live_sources(self, make_backend):
        backend = await make_backend()
        upload = await backend.upload_document("policy.txt", "Refunds are processed within 30 days.")
        answer = await backend.ask_question("How long do refunds take?")

        messages = await backend.get_messages(answer.conversation_id)

        assert [s.document_id for s in messages[1].sources] == [upload.document_id]


class TestApiKey:
    @pytest.mark.asyncio
    async def test_set_api_key(self, make_backend):
        backend = await make_backend()
        assert await backend.get_api_key_status() is False

        result = await backend.set_api_key("sk-test")

        assert result.success
        assert await backend.get_api_key_status() is True
        assert await backend.settings.get_setting(API_KEY_SETTING) == "sk-test"

    @pytest.mark.asyncio
    async def test_blank_api_key(self, make_backend):
        backend = await make_backend()
        result = await backend.set_api_key("  ")
        assert not result.success
        assert await backend.get_api_key_status() is False

    @pytest.mark.asyncio
    async def test_saved_key_is_reloaded(self, make_backend):
        backend = await make_backend()
        await backend.set_api_key("sk-test")

        restarted = await make_backend(credentials=Credentials())

        assert await restarted.get_api_key_status() is True

    @pytest.mark.asyncio
    async def test_ask_without_key_fails(self, make_backend):
        provider = ScriptedProvider()
        provider.requires_api_key = True
        backend = await make_backend(provider=provider)

        with pytest.raises(GenerationError):
            await backend.ask_question("question")

        assert await backend.get_conversations() == []


class TestFiles:
    @pytest.mark.asyncio
    async def test_read_file_content(self, make_backend, tmp_path):
        backend = await make_backend()
        path = tmp_path / "notes.txt"
        path.write_text("退款政策", encoding="utf-8")

        assert await backend.read_file_content(str(path)) == "退款政策"

        info = await backend.get_file_info(str(path))
        assert info.name == "notes.txt"
        assert info.file_type == "txt"
        assert info.size == 12

    @pytest.mark.asyncio
    async def test_file_without_extension(self, make_backend, tmp_path):
        backend = await make_backend()
        path = tmp_path / "README"
        path.write_text("hello")
        assert (await backend.get_file_info(str(path))).file_type == "unknown"

    @pytest.mark.asyncio
    async def test_missing_file(self, make_backend, tmp_path):
        backend = await make_backend()
        with pytest.raises(NotFoundError):
            await backend.read_file_content(str(tmp_path / "missing.txt"))
        with pytest.raises(NotFoundError):
            await backend.get_file_info(str(tmp_path / "missing.txt"))


class TestFactories:
    def test_default_adapters(self):
        credentials = Credentials()
        assert isinstance(create_embedding(WaliConfig(), credentials), DashScopeEmbedding)
        assert isinstance(create_provider(WaliConfig(), credentials), DashScopeProvider)

    def test_fake_embedding(self):
        embedding = create_embedding(WaliConfig(embedding_provider="fake"), Credentials())
        assert isinstance(embedding, FakeEmbedding)

    def test_unknown_names(self):
        with pytest.raises(ValueError):
            create_embedding(WaliConfig(embedding_provider="nope"), Credentials())
        with pytest.raises(ValueError):
            create_provider(WaliConfig(provider="nope"), Credentials())
