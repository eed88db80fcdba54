"""Base classes and abstract interfaces for RAG components."""

from abc import ABC, abstractmethod
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .document import Chunk, Document, IndexEntry, SearchResult


class BaseEmbedding(ABC):
    """Abstract base class for embedding models.

    Embedding models convert text into dense vector representations.
    """

    # Hosted models need the process API key before any call
    requires_api_key: bool = False

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of document chunks.

        Args:
            texts: List of text strings to embed

        Returns:
            One embedding vector per text, in input order
        """
        pass

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query.

        Args:
            text: Query text to embed

        Returns:
            Embedding vector
        """
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of the embedding vectors."""
        pass

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Identifier of the model and version that produces the vectors."""
        pass


class BaseVectorStore(ABC):
    """Abstract base class for vector stores.

    Vector stores hold index entries and search them by similarity.
    """

    @abstractmethod
    async def add(self, entries: list["IndexEntry"]) -> list[str]:
        """Add index entries, replacing entries with the same chunk id.

        Args:
            entries: Entries to add

        Returns:
            List of added chunk IDs
        """
        pass

    @abstractmethod
    async def search(
        self,
        query_embedding: list[float],
        k: int = 5,
        document_ids: Optional[set[str]] = None,
    ) -> list["SearchResult"]:
        """Search for similar chunks.

        Args:
            query_embedding: Query embedding vector
            k: Number of results to return
            document_ids: Restrict the search to these documents

        Returns:
            List of search results, best first
        """
        pass

    @abstractmethod
    async def remove_document(self, document_id: str) -> int:
        """Remove every entry of a document.

        Args:
            document_id: Document whose entries are removed

        Returns:
            Number of entries removed
        """
        pass

    @abstractmethod
    async def get(self, chunk_id: str) -> Optional["IndexEntry"]:
        """Get an entry by its chunk ID.

        Args:
            chunk_id: Chunk ID

        Returns:
            The entry if found, None otherwise
        """
        pass

    @abstractmethod
    async def count(self, document_ids: Optional[set[str]] = None) -> int:
        """Return the number of entries, optionally for some documents only."""
        pass

    @abstractmethod
    async def model_ids(self) -> set[str]:
        """Return the embedding model ids of the stored entries."""
        pass

    @abstractmethod
    async def clear(self) -> bool:
        """Clear all entries from the store."""
        pass


class BaseRetriever(ABC):
    """Abstract base class for retrievers.

    Retrievers find relevant chunks for a given query.
    """

    @abstractmethod
    async def retrieve(
        self,
        query: str,
        top_k: int = 5,
        document_ids: Optional[list[str]] = None,
    ) -> list["SearchResult"]:
        """Retrieve relevant chunks for a query.

        Args:
            query: Query string
            top_k: Number of results to return
            document_ids: Restrict retrieval to these documents

        Returns:
            List of search results, best first
        """
        pass


class BaseChunker(ABC):
    """Abstract base class for document chunkers.

    Chunkers split documents into smaller pieces for indexing.
    """

    @abstractmethod
    def chunk(self, document: "Document") -> list["Chunk"]:
        """Split a document into chunks.

        Args:
            document: Document to chunk

        Returns:
            List of chunks with consecutive positions
        """
        pass
