"""ChatCart: cart and conversation state behind a chat shopping assistant."""

__version__ = "0.1.0"
