"""Classification oracle: protocol plus OpenAI-compatible and static implementations."""

from categorizer.oracle.protocol import Classification, Classifier

__all__ = ["Classification", "Classifier"]
