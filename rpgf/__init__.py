"""
rpgf: Round lifecycle and voting core for Retroactive Public Goods Funding.

A round moves through application intake, voting, and results. This package
owns the parts of that cycle that carry real invariants:

- Phase derivation from wall-clock time (rpgf.rounds.clock)
- Voter rosters and ballots (rpgf.voting.roster, rpgf.voting.ballots)
- Admin-supplied custom datasets (rpgf.datasets)
- Ballot aggregation into per-application scores (rpgf.results)

Persistence lives in rpgf.storage; the HTTP surface in rpgf.api.
"""

__version__ = "0.1.0"
