"""Built-in technologies."""
