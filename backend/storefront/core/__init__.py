"""Shared configuration, logging, security and error types."""
