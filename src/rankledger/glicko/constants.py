"""
Glicko-2 system constants.

Values follow Glickman's "Example of the Glicko-2 system" paper:

Rating scale: public ratings are centred on 1500. Internally the algorithm
works on the Glicko-2 scale, where mu = (rating - 1500) / 173.7178 and
phi = deviation / 173.7178.

Tau: constrains how fast volatility can change. Reasonable values are
0.3 to 1.2; smaller values stop ratings swinging on surprising results.

Decay: between matches a player's deviation grows as
sqrt(deviation^2 + c^2 * periods), capped at DEFAULT_DEVIATION. With a
one-day period, c = 18.3 brings an established deviation of 50 back to
350 after roughly a year of inactivity.
"""

# Default state for a player who has never played
DEFAULT_RATING = 1500.0
DEFAULT_DEVIATION = 350.0
DEFAULT_VOLATILITY = 0.06

# Conversion factor between the public scale and the Glicko-2 scale
GLICKO2_SCALE = 173.7178

# System constant controlling volatility change
DEFAULT_TAU = 0.5

# Volatility solver bounds
CONVERGENCE_TOLERANCE = 1e-6
MAX_BRACKET_STEPS = 1000
MAX_SOLVER_ITERATIONS = 100

# Inactivity decay defaults
DECAY_DEFAULTS = {
    "c": 18.3,            # Deviation growth per period (public scale)
    "period_days": 1.0,   # Length of one inactivity period
}

# Valid match scores: loss, draw, win
VALID_SCORES = (0.0, 0.5, 1.0)
