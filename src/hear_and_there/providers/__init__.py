"""Collaborator protocols and their reference and mock implementations."""
