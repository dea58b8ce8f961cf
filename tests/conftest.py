"""Test configuration and fixtures for DocChat tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Mock services and API responses
- EmbeddingService fixtures
- Text processing fixtures
- Vector index and storage fixtures
- Service and HTTP app factories
"""

import hashlib
import json
from contextlib import contextmanager
from unittest.mock import MagicMock, Mock, patch

import numpy as np
import pytest
from fastapi.testclient import TestClient

from docchat import (
    AnsweringAgent,
    DocChatService,
    DocumentChunk,
    EmbeddingService,
    IndexHandle,
    Indexer,
    LocalDocumentStorage,
    NumpyVectorIndex,
    Retriever,
    S3DocumentStorage,
    TextChunker,
)
from docchat.agent import RETRIEVER_TOOL_NAME
from docchat.api import create_app


class TestConstants:
    """Centralized test constants to avoid repetition across test files."""

    # API Configuration
    TEST_API_KEY = "test-key"
    TEST_OPENAI_MODEL = "text-embedding-3-small"
    TEST_BUCKET = "test-bucket"
    DEFAULT_EMBEDDING_DIMENSION = 384

    # Text Chunking Configuration
    SMALL_CHUNK_SIZE = 100
    SMALL_CHUNK_OVERLAP = 20
    DEFAULT_CHUNK_SIZE = 500
    DEFAULT_CHUNK_OVERLAP = 100


class MockEmbeddingService:
    """Mock embedding service for testing without API calls.

    Generates deterministic embeddings based on text content hash,
    ensuring consistent test results across runs.
    """

    def __init__(
        self, dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION
    ) -> None:
        self.dimension = dimension
        self.batch_calls: list[list[str]] = []
        self.queries: list[str] = []

    def embed(self, text: str) -> np.ndarray:
        """Generate deterministic mock embedding based on text hash."""
        seed = int.from_bytes(
            hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
            byteorder="big",
            signed=False,
        )
        rng = np.random.default_rng(seed)
        embedding = rng.normal(0, 1, self.dimension)
        return (embedding / np.linalg.norm(embedding)).astype(np.float32)

    def get_embedding(self, text: str) -> np.ndarray:
        self.queries.append(text)
        return self.embed(text)

    def get_embeddings_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Generate batch of mock embeddings."""
        self.batch_calls.append(list(texts))
        return [self.embed(text) for text in texts]


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response."""
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_tool_call(
    query: str | None,
    call_id: str = "call_1",
    name: str = RETRIEVER_TOOL_NAME,
    arguments: str | None = None,
) -> Mock:
    """Create a mock function tool call as returned by chat completions."""
    tool_call = Mock(id=call_id, type="function")
    tool_call.function.name = name
    tool_call.function.arguments = (
        arguments if arguments is not None else json.dumps({"query": query})
    )
    return tool_call


def create_mock_chat_response(
    content: str | None,
    tool_calls: list[Mock] | None = None,
) -> Mock:
    """Create a mock OpenAI chat completion response."""
    message = Mock(content=content, tool_calls=tool_calls)
    return Mock(choices=[Mock(message=message)])


def answer_from_tool_output(**kwargs) -> Mock:
    """Scripted model: look the question up first, then quote the passages."""
    messages = kwargs["messages"]
    if messages[-1]["role"] == "tool":
        tool_output = messages[-1]["content"]
        return create_mock_chat_response(f"From the document: {tool_output}")
    question = messages[-1]["content"]
    return create_mock_chat_response(None, [create_mock_tool_call(question)])


@pytest.fixture
def embeddings_response_factory():
    """Factory for mock embeddings API responses."""
    return create_mock_openai_response


@pytest.fixture
def chat_response_factory():
    """Factory for mock chat completion responses."""
    return create_mock_chat_response


@pytest.fixture
def tool_call_factory():
    """Factory for mock retriever tool calls."""
    return create_mock_tool_call


@pytest.fixture
def scripted_model():
    """Chat side effect that calls the retriever once, then quotes its output."""
    return answer_from_tool_output


@pytest.fixture
def openai_embeddings_api_mock():
    """Base fixture that patches OpenAI embeddings.create method."""
    with patch("openai.resources.embeddings.Embeddings.create") as mock_create:
        yield mock_create


@pytest.fixture
def openai_embeddings_factory(openai_embeddings_api_mock):
    """Factory for creating OpenAI embeddings API mocks with different scenarios."""

    def _create_mock(
        scenario="single_success",
        embeddings=None,
        error_message="API Error",
    ):
        openai_embeddings_api_mock.reset_mock()
        openai_embeddings_api_mock.side_effect = None
        openai_embeddings_api_mock.return_value = None

        if scenario == "single_success":
            mock_embedding = embeddings or [0.1, 0.2, 0.3, 0.4, 0.5]
            openai_embeddings_api_mock.return_value = create_mock_openai_response([
                mock_embedding
            ])
        elif scenario == "batch_success":
            mock_embeddings = embeddings or [
                [0.1, 0.2, 0.3],
                [0.4, 0.5, 0.6],
                [0.7, 0.8, 0.9],
            ]
            openai_embeddings_api_mock.return_value = create_mock_openai_response(
                mock_embeddings
            )
        elif scenario == "error":
            openai_embeddings_api_mock.side_effect = Exception(error_message)
        elif scenario == "multiple_batches":
            openai_embeddings_api_mock.side_effect = [
                create_mock_openai_response([[0.1, 0.2], [0.3, 0.4]]),
                create_mock_openai_response([[0.5, 0.6], [0.7, 0.8]]),
            ]
        elif scenario == "partial_failure":
            openai_embeddings_api_mock.side_effect = [
                create_mock_openai_response([[0.1, 0.2]]),
                Exception("Second batch failed"),
            ]

        return openai_embeddings_api_mock

    return _create_mock


@pytest.fixture
def embedding_service_factory():
    """Factory for creating EmbeddingService instances."""

    def _create_service(api_key=None, model=None, timeout=None):
        api_key = api_key or TestConstants.TEST_API_KEY
        return EmbeddingService(api_key=api_key, model=model, timeout=timeout)

    return _create_service


@pytest.fixture
def embedding_service(embedding_service_factory):
    """Default EmbeddingService with test API key for most tests."""
    return embedding_service_factory()


@pytest.fixture
def text_chunker_small():
    """Text chunker configured for small chunks (100/20)."""
    return TextChunker(
        chunk_size=TestConstants.SMALL_CHUNK_SIZE,
        overlap=TestConstants.SMALL_CHUNK_OVERLAP,
    )


@pytest.fixture
def mock_embedding_service():
    """Fresh MockEmbeddingService that records its calls."""
    return MockEmbeddingService()


@pytest.fixture
def mock_embeddings(mock_embedding_service):
    """Factory function to create mock embeddings using the service."""
    return mock_embedding_service.embed


@pytest.fixture
def sample_text_chunks():
    """Create sample document chunks with text and metadata only (no embeddings)."""
    texts = [
        "Machine learning is a subset of artificial intelligence.",
        "Neural networks are computational models inspired by the brain.",
        "Deep learning uses multiple layers to learn complex patterns.",
        "Supervised learning uses labeled training data.",
        "Unsupervised learning finds patterns in unlabeled data.",
    ]

    return [
        DocumentChunk(
            content=text,
            metadata={
                "source": f"test_doc_{i // 3}.txt",
                "chunk_id": i,
                "start_char": i * 100,
                "end_char": (i + 1) * 100,
                "length": len(text),
            },
        )
        for i, text in enumerate(texts)
    ]


@pytest.fixture
def sample_embedded_chunks(sample_text_chunks, mock_embeddings):
    """Create sample document chunks with embeddings based on text chunks."""
    return [
        DocumentChunk(
            content=chunk.content,
            metadata=chunk.metadata,
            embedding=mock_embeddings(chunk.content),
        )
        for chunk in sample_text_chunks
    ]


@pytest.fixture
def sample_chunks():
    """Create sample document chunks with scores for testing."""
    return [
        (
            DocumentChunk(
                content="Machine learning is a subset of artificial intelligence.",
                metadata={"source": "ml_doc.txt", "chunk_id": 1},
            ),
            0.8,
        ),
        (
            DocumentChunk(
                content="Deep learning uses neural networks with multiple layers.",
                metadata={"source": "dl_doc.txt", "chunk_id": 2},
            ),
            0.7,
        ),
    ]


@pytest.fixture
def memory_index(sample_embedded_chunks) -> NumpyVectorIndex:
    """In-memory index populated with the sample chunks."""
    index = NumpyVectorIndex()
    index.add_chunks(sample_embedded_chunks)
    return index


@pytest.fixture
def local_storage(tmp_path) -> LocalDocumentStorage:
    """Local storage rooted in a temporary directory."""
    return LocalDocumentStorage(tmp_path / "uploads")


@pytest.fixture
def s3_client():
    """MagicMock standing in for a boto3 S3 client."""
    client = MagicMock()
    client.generate_presigned_url.return_value = "https://s3.example.com/presigned"
    return client


@pytest.fixture
def s3_storage(s3_client) -> S3DocumentStorage:
    """S3 storage backed by the mock client."""
    return S3DocumentStorage(TestConstants.TEST_BUCKET, client=s3_client)


@pytest.fixture
def index_handle() -> IndexHandle:
    return IndexHandle()


@pytest.fixture
def retriever(mock_embedding_service, index_handle) -> Retriever:
    return Retriever(mock_embedding_service, index_handle, top_k=4)


@pytest.fixture
def agent(retriever) -> AnsweringAgent:
    """AnsweringAgent with a test key; script it with ``chat_mock_factory``."""
    return AnsweringAgent(
        retriever,
        openai_api_key=TestConstants.TEST_API_KEY,
        max_tool_calls=2,
        timeout=5,
    )


@pytest.fixture
def chat_mock_factory():
    """Patch an agent's client.chat.completions.create for one block."""

    @contextmanager
    def _mock_chat(agent, content="Test response", side_effect=None):
        with patch.object(agent.client.chat.completions, "create") as mock_create:
            if side_effect is not None:
                mock_create.side_effect = side_effect
            else:
                mock_create.return_value = create_mock_chat_response(content)
            yield mock_create

    return _mock_chat


@pytest.fixture
def service_factory(
    local_storage, mock_embedding_service, index_handle, agent
):
    """Factory building a DocChatService over mock embeddings and the agent."""

    def _create_service(storage=None, chunk_size=200, overlap=50, **kwargs):
        indexer = Indexer(
            embedding_service=mock_embedding_service,
            chunk_size=chunk_size,
            overlap=overlap,
            vector_backend="memory",
        )
        return DocChatService(
            storage=storage or local_storage,
            indexer=indexer,
            agent=agent,
            handle=index_handle,
            verify_attempts=kwargs.pop("verify_attempts", 2),
            verify_interval=kwargs.pop("verify_interval", 0),
            **kwargs,
        )

    return _create_service


@pytest.fixture
def service(service_factory) -> DocChatService:
    return service_factory()


@pytest.fixture
def client(service):
    """TestClient over an app wired to the test service."""
    return TestClient(create_app(service))
