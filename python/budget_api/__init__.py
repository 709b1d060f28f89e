"""
Budget API Package

FastAPI application exposing statement import and categorization rules.
"""
