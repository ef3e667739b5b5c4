"""
Mirage Analyzers
=================

Threat detectors run by the correlation engine once per scan cycle.

Modules:
    base        -- DetectionContext and the Detector protocol
    evil_twin   -- Same-SSID impersonation (security downgrade, vendor mismatch)
    karma       -- APs answering for arbitrary SSIDs (KARMA / MANA)
    pineapple   -- Weighted rogue-hardware heuristics
"""

from mirage.analyzers.base import DetectionContext, Detector
from mirage.analyzers.evil_twin import EvilTwinDetector
from mirage.analyzers.karma import KarmaDetector
from mirage.analyzers.pineapple import PineappleDetector

__all__ = [
    "DetectionContext",
    "Detector",
    "EvilTwinDetector",
    "KarmaDetector",
    "PineappleDetector",
]
