"""
Core domain layer.
"""
