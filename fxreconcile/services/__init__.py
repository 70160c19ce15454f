"""Service layer — orchestration over the DAOs."""
