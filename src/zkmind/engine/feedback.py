"""Feedback engine — red/white peg computation.

The circuit asserts this exact algorithm, so it must not be "optimised"
into a different but equivalent-looking form:

1. Exact pass: every position where secret[i] == guess[i] is consumed
   and counts as a red peg.
2. Color pass: for each symbol value, count its occurrences among the
   unconsumed positions of the secret and, independently, of the guess;
   min(count_secret, count_guess) white pegs for that symbol.

A single pass miscounts duplicates: a secret symbol consumed by an exact
match must not also satisfy a color match elsewhere.
"""

from __future__ import annotations

from zkmind.models.game import CODE_LENGTH, NUM_COLORS, Code, Feedback


class FeedbackEngine:
    """Deterministic Mastermind scoring. Pure computation, no state."""

    @staticmethod
    def compute(secret: Code, guess: Code) -> Feedback:
        is_exact = [secret[i] == guess[i] for i in range(CODE_LENGTH)]
        exact_matches = sum(is_exact)

        color_matches = 0
        for color in range(NUM_COLORS):
            count_in_secret = 0
            count_in_guess = 0
            for i in range(CODE_LENGTH):
                if is_exact[i]:
                    continue
                if secret[i] == color:
                    count_in_secret += 1
                if guess[i] == color:
                    count_in_guess += 1
            color_matches += min(count_in_secret, count_in_guess)

        return Feedback(exact_matches=exact_matches, color_matches=color_matches)

    @staticmethod
    def is_consistent(secret: Code, guess: Code, feedback: Feedback) -> bool:
        """Check a disclosed feedback against a known secret."""
        return FeedbackEngine.compute(secret, guess) == feedback
