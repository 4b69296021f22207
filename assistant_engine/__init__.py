"""Assistant Engine: retrieval-augmented answering service for marketplace sellers."""

__version__ = "0.1.0"
