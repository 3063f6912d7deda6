"""Essay feedback platform: identity, classroom membership and essay scoring."""

__version__ = "0.1.0"
