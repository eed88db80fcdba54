"""Tests for the DashScope adapters, credentials and configuration."""

import json
import logging

import httpx
import pytest

from wali.exceptions import GenerationError, RetrievalError, TransientUpstreamError
from wali.providers import DashScopeProvider
from wali.providers.dashscope import DASHSCOPE_BASE_URL, EMBEDDING_PATH, GENERATION_PATH
from wali.rag import DashScopeEmbedding
from wali.utils.config import Credentials, WaliConfig, load_config
from wali.utils.logging import get_logger, set_log_level


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestDashScopeEmbedding:
    @pytest.mark.asyncio
    async def test_embeds_in_text_index_order(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"output": {"embeddings": [
                {"text_index": 1, "embedding": [0.0, 1.0]},
                {"text_index": 0, "embedding": [1.0, 0.0]},
            ]}})

        embedding = DashScopeEmbedding(Credentials("sk-test"), client=mock_client(handler))
        vectors = await embedding.embed_documents(["first", "second"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        request = requests[0]
        assert str(request.url) == DASHSCOPE_BASE_URL + EMBEDDING_PATH
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert json.loads(request.content) == {
            "model": "text-embedding-v2",
            "input": {"texts": ["first", "second"]},
        }

    @pytest.mark.asyncio
    async def test_vector_count_mismatch(self):
        def handler(request):
            return httpx.Response(200, json={"output": {"embeddings": [{"text_index": 0, "embedding": [1.0]}]}})

        embedding = DashScopeEmbedding(Credentials("sk-test"), client=mock_client(handler))
        with pytest.raises(RetrievalError):
            await embedding.embed_documents(["a", "b"])

    @pytest.mark.asyncio
    async def test_rate_limit_is_transient(self):
        def handler(request):
            return httpx.Response(429, text="Throttling")

        embedding = DashScopeEmbedding(Credentials("sk-test"), client=mock_client(handler))
        with pytest.raises(TransientUpstreamError) as exc_info:
            await embedding.embed_query("q")
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_auth_failure_is_fatal(self):
        def handler(request):
            return httpx.Response(401, json={"code": "InvalidApiKey"})

        embedding = DashScopeEmbedding(Credentials("sk-bad"), client=mock_client(handler))
        with pytest.raises(RetrievalError, match="401"):
            await embedding.embed_query("q")

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        embedding = DashScopeEmbedding(Credentials("sk-test"), client=mock_client(handler))
        with pytest.raises(TransientUpstreamError):
            await embedding.embed_query("q")

    @pytest.mark.asyncio
    async def test_missing_key(self):
        def handler(request):
            raise AssertionError("no request expected")

        embedding = DashScopeEmbedding(Credentials(), client=mock_client(handler))
        with pytest.raises(GenerationError):
            await embedding.embed_query("q")

    def test_model_id(self):
        embedding = DashScopeEmbedding(Credentials(), model="text-embedding-v3")
        assert embedding.model_id == "dashscope/text-embedding-v3"
        assert embedding.dimension == 1024


class TestDashScopeProvider:
    @pytest.mark.asyncio
    async def test_text_output(self):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={
                "output": {"text": "Refunds take 30 days.", "finish_reason": "stop"},
                "usage": {"input_tokens": 12, "output_tokens": 5},
            })

        provider = DashScopeProvider(Credentials("sk-test"), client=mock_client(handler))
        response = await provider.complete(
            [{"role": "user", "content": "hi"}], model="qwen-turbo", temperature=0.7, top_p=0.9
        )

        assert response["content"] == "Refunds take 30 days."
        assert response["usage"] == {"prompt_tokens": 12, "completion_tokens": 5}
        body = requests[0]
        assert body["model"] == "qwen-turbo"
        assert body["input"]["messages"] == [{"role": "user", "content": "hi"}]
        assert body["parameters"]["top_p"] == 0.9
        assert body["parameters"]["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_choices_output(self):
        def handler(request):
            assert str(request.url) == DASHSCOPE_BASE_URL + GENERATION_PATH
            return httpx.Response(200, json={"output": {"choices": [{"message": {"content": "From choices"}}]}})

        provider = DashScopeProvider(Credentials("sk-test"), client=mock_client(handler))
        response = await provider.complete([{"role": "user", "content": "hi"}], model="qwen-turbo")
        assert response["content"] == "From choices"

    @pytest.mark.asyncio
    async def test_empty_output(self):
        def handler(request):
            return httpx.Response(200, json={"output": {}})

        provider = DashScopeProvider(Credentials("sk-test"), client=mock_client(handler))
        with pytest.raises(GenerationError):
            await provider.complete([{"role": "user", "content": "hi"}], model="qwen-turbo")

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        provider = DashScopeProvider(Credentials("sk-test"), client=mock_client(handler))
        with pytest.raises(TransientUpstreamError):
            await provider.complete([{"role": "user", "content": "hi"}], model="qwen-turbo")

    @pytest.mark.asyncio
    async def test_bad_request_is_fatal(self):
        def handler(request):
            return httpx.Response(400, text="invalid model")

        provider = DashScopeProvider(Credentials("sk-test"), client=mock_client(handler))
        with pytest.raises(GenerationError):
            await provider.complete([{"role": "user", "content": "hi"}], model="nope")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        provider = DashScopeProvider(Credentials("sk-test"), client=mock_client(handler))
        with pytest.raises(GenerationError):
            await provider.complete([{"role": "user", "content": "hi"}], model="qwen-turbo")


class TestCredentials:
    def test_lifecycle(self):
        credentials = Credentials()
        assert not credentials.is_set
        with pytest.raises(GenerationError):
            credentials.require()

        credentials.set("  sk-secret ")

        assert credentials.is_set
        assert credentials.get() == "sk-secret"
        assert credentials.require() == "sk-secret"

    def test_blank_key_rejected(self):
        with pytest.raises(ValueError):
            Credentials().set("   ")

    def test_repr_hides_key(self):
        assert "sk-secret" not in repr(Credentials("sk-secret"))


class TestConfig:
    def test_defaults(self):
        config = WaliConfig()
        assert config.chunk_size == 800
        assert config.chunk_overlap == 80
        assert config.top_k == 3
        assert config.embedding_model == "text-embedding-v2"
        assert config.llm_model == "qwen-turbo"
        assert config.embedding_batch_size == 25

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config(tmp_path / "absent.yaml") == WaliConfig()

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "wali.yaml"
        path.write_text("top_k: 5\nllm_model: qwen-plus\ndata_dir: /tmp/wali\n")

        config = load_config(path)

        assert config.top_k == 5
        assert config.llm_model == "qwen-plus"
        assert str(config.database_path) == "/tmp/wali/wali.db"

    def test_load_json(self, tmp_path):
        path = tmp_path / "wali.json"
        path.write_text(json.dumps({"chunk_size": 400, "chunk_overlap": 40}))
        assert load_config(path).chunk_size == 400

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "wali.toml"
        path.write_text("top_k = 5")
        with pytest.raises(ValueError):
            load_config(path)


class TestLogging:
    def test_get_logger_configures_handler_once(self):
        logger = get_logger("wali.test_logging")
        again = get_logger("wali.test_logging")
        assert logger is again
        assert len(logger.handlers) == 1

    def test_set_log_level(self):
        previous = logging.getLogger("wali").level
        try:
            set_log_level("debug")
            assert logging.getLogger("wali").level == logging.DEBUG
        finally:
            logging.getLogger("wali").setLevel(previous)
