"""FastAPI routers for the Radio Quote Engine."""
