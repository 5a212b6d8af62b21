"""Flask middleware."""
