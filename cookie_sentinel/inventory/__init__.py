"""Durable cookie inventory: reconciliation and the embed detection channel."""

from .descriptions import describe_cookie, describe_purpose, purpose_id
from .embed import EmbedDetectionService, embed_pattern
from .reconciler import ReconciliationResult, Reconciler, append_pattern

__all__ = [
    'EmbedDetectionService',
    'ReconciliationResult',
    'Reconciler',
    'append_pattern',
    'describe_cookie',
    'describe_purpose',
    'embed_pattern',
    'purpose_id',
]
