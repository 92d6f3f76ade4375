"""Infrastructure adapters: observability and the FastAPI application shell."""
