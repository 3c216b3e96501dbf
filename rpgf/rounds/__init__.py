"""
rpgf.rounds: Round lifecycle.

Modules:
    clock   : Pure phase derivation over an injectable clock.
    service : Round creation, publishing, admin capability check,
               and the testing-only phase override.
"""
