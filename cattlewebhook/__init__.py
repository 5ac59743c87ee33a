"""Admission validators and a fleet workspace mutator for cluster management resources."""

__version__ = "0.1.0"