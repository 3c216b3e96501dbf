"""
rpgf.voting: Who may vote, and what they voted.

Modules:
    roster:  VoterRoster, the admin-managed voter set, frozen on publish.
    ballots: BallotStore, one ballot per (round, voter), VOTING phase only.
"""
