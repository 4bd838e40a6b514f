"""Service layer: extraction, storage, AI transformations, speech and export."""
