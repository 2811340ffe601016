"""
Resolutions module: voting and e-signature.

- Resolutions move Draft -> Open -> Passed/Failed; terminal states are final
- One live vote per board member while Open; the tally runs once, at close
- Signatures on Passed resolutions are append-only
- Meaningful actions are recorded to the append-only audit trail
"""
