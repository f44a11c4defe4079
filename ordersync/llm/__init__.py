"""Gemini-backed language oracle."""
