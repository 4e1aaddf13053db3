# src/pipeline/constants.py — v1
"""Shared constraints for session ids, payload checksums and pipeline types.

Every integration that emits events is held to these limits so that all
recorded histories hash the same way.
"""

from __future__ import annotations

import re
from typing import Literal

# Session ids are URL-safe and map to the checkout id of the hosting app.
SESSION_ID_MAX_LENGTH = 128
SESSION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

# All payload checksums are lowercase SHA-256 hex digests.
CHECKSUM_LENGTH = 64
CHECKSUM_PATTERN = re.compile(r"^[a-f0-9]{64}$")

# Max retry/sequence number for a single step.
MAX_SEQUENCE = 99

# Chain seeds.
GENESIS_SEED = "GENESIS"
EMPTY_CHAIN_MARKER = "EMPTY"

PipelineStep = Literal[
    "buyer_validated",
    "address_validated",
    "fraud_check",
    "fraud_review_escalated",
    "payment_initiated",
    "payment_confirmed",
    "fulfillment_delegated",
    "webhook_received",
    "webhook_verified",
    "checkout_completed",
    "checkout_failed",
]

PipelineEventStatus = Literal["success", "failure", "pending", "skipped"]
