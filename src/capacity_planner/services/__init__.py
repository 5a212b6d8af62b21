"""Backend client, capacity pipeline and editing sessions."""
