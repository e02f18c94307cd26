"""Read-only alert projection over products and batches."""
