"""Cancellation, retry and fan-out primitives shared by the workflows."""
