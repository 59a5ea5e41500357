"""
Background Jobs for Ops Journal.

This module contains scheduled and background jobs:
- outbox_worker: Standalone notification outbox delivery
"""

from .outbox_worker import run_outbox_worker

__all__ = ["run_outbox_worker"]
