"""Cross-cutting HTTP concerns: error mapping and request correlation."""
