"""Core primitives shared by the engine, API and CLI."""
