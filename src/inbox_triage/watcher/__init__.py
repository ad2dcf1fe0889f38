"""Change watching, batching and dispatch of incoming items."""
