"""Fairness engine default constants.

Values here are the defaults used when `config/fairness_config.yaml` (or an
override mapping) does not set a key. The thresholds are empirically chosen
mitigations, not derived constants.
"""

# ─── Update policy ───

BATCH_SIZE = 5                  # shots per skill update
HIGH_STAKES_MULTIPLE = 2.0      # wager >= multiple x reference average flushes immediately
OUTLIER_SIGMA = 3.0             # leave-one-out z-score cutoff
OUTLIER_MIN_BATCH = 3           # no screening below this batch size
RATE_LIMIT_FRACTION = 0.20      # max ceiling move per update (+/-)
MAX_PENDING_FACTOR = 4          # pending batch bound = factor x batch size
HISTORY_LIMIT = 1000            # shots (and records) kept per unit for the detectors

# ─── Shot distribution ───

FAT_TAIL_PROBABILITY = 0.02
FAT_TAIL_MULTIPLIER = 3.0

# ─── Skill estimator (1D Kalman) ───

PROCESS_NOISE = 1.0
INITIAL_UNCERTAINTY = 1000.0    # high -> low initial confidence
MIN_MEASUREMENT_NOISE = 50.0
SINGLE_SHOT_VARIANCE = 100.0    # batch variance used for one-shot batches
MIN_ESTIMATE = 0.01             # feet; keeps sigma positive

# Confidence band (uncertainty values mapped onto 100..0)
CONFIDENCE_MIN_UNCERTAINTY = 50.0
CONFIDENCE_MAX_UNCERTAINTY = 1000.0

# Representative distance (yds) per club category for the prior
CATEGORY_DISTANCES: dict[str, int] = {
    'wedge': 100,       # 75-125 yds
    'mid_iron': 162,    # 150-175 yds
    'long_iron': 225,   # 200-250 yds
}

# ─── Payout calibration ───

INTEGRATION_TOLERANCE = 1e-3    # relative change allowed when subdivisions double
INITIAL_SUBDIVISIONS = 256      # per mesh segment, must be even
MAX_DOUBLINGS = 8
TAIL_CUTOFF_SIGMAS = 12.0       # density beyond this many scales is negligible
NEAR_ZERO_FRACTION = 0.125      # share of the range given its own segment near d=0
INVERT_MAX_ITERATIONS = 60
INVERT_TOLERANCE = 1e-6

# ─── Anomaly detection ───

CHERRY_MIN_SHOTS = 10
CHERRY_CORRELATION_THRESHOLD = 0.5
CHERRY_WAGER_CV_THRESHOLD = 0.25

SANDBAG_MIN_SHOTS = 10
SANDBAG_BASELINE_QUANTILE = 0.25
SANDBAG_POOR_MULTIPLE = 2.5
SANDBAG_MIN_RUN = 5
SANDBAG_RUN_SATURATION = 10
SANDBAG_INFLATION_MULTIPLE = 1.5
SANDBAG_INFLATION_SATURATION = 3.0

SKILL_JUMP_MIN_SHOTS = 20
SKILL_JUMP_WINDOW = 3           # updates
SKILL_JUMP_IMPROVEMENT = 0.30
SKILL_JUMP_ORGANIC_RATIO = 0.5  # uncertainty must fall below this share for a jump to be organic

# ─── Deployment ───

SETTLES_WAGERS = True
ALLOW_MANUAL_OVERRIDE = False
