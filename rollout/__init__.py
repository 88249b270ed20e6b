"""Release rollout tracking: state store, mutation API, CI and notes consumers."""

__version__ = "0.1.0"
