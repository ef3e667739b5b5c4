"""
Mirage -- Rogue Access Point Correlation Engine
=================================================

Mirage consumes periodic Wi-Fi scan snapshots and, by correlating each
access point's history across scan cycles, reports three classes of
wireless impersonation attack:

    - Evil Twin: a BSSID cloning a legitimate SSID, typically with
      weaker security or from a different vendor.
    - Karma / MANA: one BSSID answering for many unrelated SSIDs.
    - Pineapple: dedicated rogue-AP hardware recognised by weighted
      heuristics (vendor prefix, channel hopping, bursts of virtual APs).

Findings persist across cycles: re-detection confirms them, prolonged
absence resolves them.

Modules:
    core.engine     -- Per-cycle correlation pipeline
    core.store      -- Bounded per-BSSID observation store
    core.models     -- Pydantic domain models
    collectors      -- Snapshot normalisation and replay input
    analyzers       -- Evil-Twin, Karma and Pineapple detectors
    output          -- Finding sinks, console tables, JSON reports
    cli             -- Click-based command-line interface

References:
    - IEEE. (2020). IEEE Std 802.11-2020: Wireless LAN MAC and PHY
      Specifications.
    - Dai Zovi, D., & Macaulay, S. (2005). Attacking Automatic Wireless
      Network Selection. IEEE Information Assurance Workshop.
"""

__version__ = "1.0.0"
__tool__ = "Mirage"
__description__ = "Rogue Access Point Correlation Engine"
