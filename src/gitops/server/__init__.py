"""Control-plane API server components."""
