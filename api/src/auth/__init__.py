"""Learner authentication (JWT bearer tokens)."""

from .dependencies import CurrentLearner, get_current_learner
from .security import create_access_token, decode_access_token


__all__ = [
    "CurrentLearner",
    "create_access_token",
    "decode_access_token",
    "get_current_learner",
]
