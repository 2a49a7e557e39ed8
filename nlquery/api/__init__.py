"""FastAPI application exposing connections, conversations and turn streams."""
