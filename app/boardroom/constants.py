"""
Central constants for the board resolutions service.
"""
from __future__ import annotations

# (key, display name) for every permission the API checks.
PERMISSIONS = (
    ("resolutions.view", "Resolutions: view"),
    ("resolutions.create", "Resolutions: create"),
    ("resolutions.edit", "Resolutions: edit metadata"),
    ("resolutions.delete", "Resolutions: delete drafts"),
    ("resolutions.manage", "Resolutions: open and close voting"),
    ("votes.cast", "Votes: cast and retract"),
    ("votes.record", "Votes: record on behalf of a board member"),
    ("signatures.view", "Signatures: view"),
    ("signatures.create", "Signatures: sign"),
    ("signatures.record", "Signatures: capture on behalf of a board member"),
)

# Seeded roles. Admin gets everything.
ROLE_PERMISSIONS = {
    "admin": tuple(key for key, _ in PERMISSIONS),
    "secretary": (
        "resolutions.view",
        "resolutions.create",
        "resolutions.edit",
        "resolutions.delete",
        "resolutions.manage",
        "votes.cast",
        "votes.record",
        "signatures.view",
        "signatures.create",
        "signatures.record",
    ),
    "board_member": (
        "resolutions.view",
        "votes.cast",
        "signatures.view",
        "signatures.create",
    ),
}

ROLE_NAMES = {
    "admin": "Administrator",
    "secretary": "Company Secretary",
    "board_member": "Board Member",
}
