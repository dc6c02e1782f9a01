"""Migraine adapter: payloads, feature profiles, the bundled tree and attack logging."""

from .attack_log import AttackLogOutcome, AttackLogService
from .domain import (
    FEATURE_NAMES,
    FEATURE_PROFILES,
    PAYLOAD_MODELS,
    GeneralSnapshot,
    MigraineEntry,
    Namespace,
    build_risk_service,
    load_default_tree,
)

__all__ = [
    "FEATURE_NAMES",
    "FEATURE_PROFILES",
    "PAYLOAD_MODELS",
    "AttackLogOutcome",
    "AttackLogService",
    "GeneralSnapshot",
    "MigraineEntry",
    "Namespace",
    "build_risk_service",
    "load_default_tree",
]
