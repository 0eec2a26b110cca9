"""Data model, configuration and shared infrastructure."""
