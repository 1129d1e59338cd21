"""
Utils Package

Provides utility modules for:
- validation_errors: Structured 422 error bodies for input errors
"""
