"""Service layer: relay, auth, chat store, title heuristic."""
