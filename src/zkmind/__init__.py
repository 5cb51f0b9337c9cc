"""ZKMind — commit-reveal, proof-carrying Mastermind."""

__version__ = "0.1.0"
