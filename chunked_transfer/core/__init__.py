"""Configuration, error taxonomy and cross-cutting decorators."""
