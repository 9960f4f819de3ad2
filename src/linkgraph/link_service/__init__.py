"""HTTP surface for the link graph: FastAPI app, server entry point and client."""
