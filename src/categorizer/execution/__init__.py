"""Job execution: chunking, metrics, typed events and the engine."""
