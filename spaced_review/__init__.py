"""Spaced-repetition review scheduling."""
