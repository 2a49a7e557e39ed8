"""Service layer: generation, persistence, delivery and turn orchestration."""
