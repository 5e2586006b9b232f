"""Document chat configuration."""
import os
from dataclasses import dataclass, field, fields

from dotenv import load_dotenv


DEFAULT_SYSTEM_PROMPT = """You are an expert reading assistant that answers questions about a single document the user has open.

Instructions:
1. Answer using the document excerpts provided below. If the excerpts do not contain the answer, say so clearly.
2. Format answers in Markdown. Use headings and lists when they make long answers easier to read.
3. Write mathematical expressions in LaTeX: inline math as $...$ and display math as $$...$$.
4. Be accurate and concise. Do not make up information that is not in the excerpts."""


@dataclass
class RAGConfig:
    """
    Global configuration for the document chat system.

    Attributes:
        chunk_size: Target size of each chunk in characters
        min_chunk_size: A chunk is only emitted once it reaches this size
        max_chunk_size: Segments longer than this are re-split into sentences
        chunk_overlap: Trailing characters of a chunk repeated at the start of the next
        embedding_provider: Embedding backend ('sentence-transformers' or 'gemini')
        embedding_model: Model name for the embedding backend
        embedding_device: Device for local embeddings ('cpu' or 'cuda')
        embedding_batch_size: Chunks per embedding request
        embedding_max_concurrency: Embedding batches in flight at once
        vector_backend: Chunk store backend ('chroma' or 'memory')
        collection_name: Name of the ChromaDB collection
        persist_directory: Directory to persist ChromaDB data
        database_url: SQLAlchemy URL for documents, conversations and messages
        min_similarity: Similarity floor for plain semantic search
        max_chunk_budget: Hard ceiling on chunks retrieved for one query
        llm_model: Gemini model name
        temperature: LLM temperature (0.0-2.0)
        max_tokens: Maximum tokens in LLM response
        system_prompt: Base system prompt for the LLM
        index_timeout_seconds: Upper bound on one indexing request
        gemini_api_key: API key for Gemini (embeddings and completions)
        cors_origins: Comma-separated origins allowed to call the API
        log_level: Root logging level for the server
    """

    # Chunking parameters
    chunk_size: int = 1000
    min_chunk_size: int = 400
    max_chunk_size: int = 1500
    chunk_overlap: int = 200

    # Embedding parameters
    embedding_provider: str = "sentence-transformers"  # sentence-transformers, gemini
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_device: str = "cpu"
    embedding_batch_size: int = 50
    embedding_max_concurrency: int = 2

    # Storage parameters
    vector_backend: str = "chroma"  # chroma, memory
    collection_name: str = "document_chunks"
    persist_directory: str = "./chroma_db"
    database_url: str = "sqlite:///./docchat.db"

    # Retrieval parameters
    min_similarity: float = 0.1
    max_chunk_budget: int = 50

    # Generation parameters
    llm_model: str = "gemini-2.0-flash"
    temperature: float = 0.7
    max_tokens: int = 2000
    system_prompt: str = field(default=DEFAULT_SYSTEM_PROMPT)

    # Service parameters
    index_timeout_seconds: float = 60.0
    gemini_api_key: str = field(default="", repr=False)
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    log_level: str = "INFO"

    def to_dict(self) -> dict:
        """Convert config to dictionary (the API key is left out)."""
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != 'gemini_api_key'}

    @classmethod
    def from_dict(cls, data: dict) -> 'RAGConfig':
        """Create config from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @classmethod
    def from_env(cls) -> 'RAGConfig':
        """Create config from environment variables (and a .env file if present)."""
        load_dotenv()
        defaults = cls()
        return cls(
            chunk_size=int(os.getenv("CHUNK_SIZE", defaults.chunk_size)),
            min_chunk_size=int(os.getenv("MIN_CHUNK_SIZE", defaults.min_chunk_size)),
            max_chunk_size=int(os.getenv("MAX_CHUNK_SIZE", defaults.max_chunk_size)),
            chunk_overlap=int(os.getenv("CHUNK_OVERLAP", defaults.chunk_overlap)),
            embedding_provider=os.getenv("EMBEDDING_PROVIDER", defaults.embedding_provider),
            embedding_model=os.getenv("EMBEDDING_MODEL", defaults.embedding_model),
            embedding_device=os.getenv("EMBEDDING_DEVICE", defaults.embedding_device),
            embedding_batch_size=int(os.getenv("EMBEDDING_BATCH_SIZE", defaults.embedding_batch_size)),
            embedding_max_concurrency=int(
                os.getenv("EMBEDDING_MAX_CONCURRENCY", defaults.embedding_max_concurrency)
            ),
            vector_backend=os.getenv("VECTOR_BACKEND", defaults.vector_backend),
            collection_name=os.getenv("COLLECTION_NAME", defaults.collection_name),
            persist_directory=os.getenv("CHROMA_PERSIST_DIR", defaults.persist_directory),
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            min_similarity=float(os.getenv("MIN_SIMILARITY", defaults.min_similarity)),
            llm_model=os.getenv("LLM_MODEL", defaults.llm_model),
            temperature=float(os.getenv("TEMPERATURE", defaults.temperature)),
            max_tokens=int(os.getenv("MAX_TOKENS", defaults.max_tokens)),
            index_timeout_seconds=float(os.getenv("INDEX_TIMEOUT_SECONDS", defaults.index_timeout_seconds)),
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            cors_origins=os.getenv("CORS_ORIGINS", defaults.cors_origins),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        )

    @property
    def allowed_origins(self) -> list:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
