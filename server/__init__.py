"""FastAPI service exposing indexing, retrieval and chat over documents."""
