"""Configuration, logging and error handling shared by every layer."""
