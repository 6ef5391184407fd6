"""IqraQuest escrow and payout settlement core."""
__version__ = "0.1.0"
