"""StoreHub Admin CLI."""
