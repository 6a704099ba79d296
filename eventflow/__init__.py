"""EventFlow event lifecycle and moderation service."""
