"""
config.py — Pipeline constants shared by every stage.

All windows are measured from a player's install timestamp on the UTC clock.
"""
from datetime import timedelta

SEED = 42

# ── Windows ─────────────────────────────────────────────────────────
FEATURE_WINDOW_DAYS = 7
LABEL_HORIZONS = {"ltv_d3": 3, "ltv_d7": 7, "ltv_d30": 30, "ltv_d60": 60, "ltv_d90": 90}
CHURN_WINDOW_DAYS = (7, 14)
TIME_SENTINEL_HOURS = 999.0

# ── Cleaning ────────────────────────────────────────────────────────
DRIFT_TOLERANCE = timedelta(hours=1)
QUARANTINE_HORIZON = timedelta(days=62)
VOLUME_Z_THRESHOLD = 2.0
MAX_DUPLICATE_EXAMPLES = 5
MAX_LATE_EXAMPLES = 3

# Fixed conversion rates into the reporting currency (USD per 1 unit)
VND_TO_USD_RATE = 24_000
FX_RATES_TO_USD = {
    "USD": 1.0,
    "VND": 1.0 / VND_TO_USD_RATE,
    "EUR": 1.08,
    "GBP": 1.27,
    "JPY": 1.0 / 150,
    "KRW": 1.0 / 1_350,
    "THB": 1.0 / 36,
    "IDR": 1.0 / 15_700,
    "PHP": 1.0 / 56,
}
BASE_CURRENCY = "USD"

# ── Splitting ───────────────────────────────────────────────────────
IMMATURE_FRACTION = 0.03
TRAIN_FRACTION = 0.70
VALIDATION_FRACTION = 0.15
TEST_FRACTION = 0.15

# ── Training ────────────────────────────────────────────────────────
MIN_FEATURES = 3
TARGETS = ("ltv_d30", "ltv_d60", "ltv_d90")
TRACKS = ("cold", "warm")
XGB_PARAMS = dict(
    n_estimators=200,
    max_depth=6,
    learning_rate=0.05,
    min_child_weight=1,
    subsample=1.0,
    colsample_bytree=1.0,
    tree_method="hist",
    random_state=SEED,
    n_jobs=1,
)

# (label, lower, upper) in USD; upper bound is exclusive
CALIBRATION_BUCKETS = [
    ("$0", -0.01, 0.01),
    ("$0-5", 0.01, 5.0),
    ("$5-20", 5.0, 20.0),
    ("$20-50", 20.0, 50.0),
    ("$50-100", 50.0, 100.0),
    ("$100-500", 100.0, 500.0),
    ("$500+", 500.0, float("inf")),
]

WHALE_SEGMENT = "Whale (Top 1%)"
# (minimum decile, segment name), checked top-down after the whale cut
SEGMENT_BANDS = [
    (9, "High Value"),
    (7, "Mid Value"),
    (4, "Low Value"),
    (1, "Minimal Value"),
]
WHALE_PERCENTILE = 99

# ── Comparison ──────────────────────────────────────────────────────
WHALE_QUANTILE = 0.90
LIFT_CURVE_STEPS = 20
PRESET_K_FRACTIONS = [0.001, 0.005, 0.01, 0.02, 0.05, 0.10]
PRESET_K_ABSOLUTE = [100, 500, 1000]
DEFAULT_REFERENCE_STRATEGY = "ltv_d7"

# ── Label conflicts ────────────────────────────────────────────────
BOUNDARY_DISTANCE = 0.15
MAX_CONFLICT_PAIRS = 50
MAX_BOUNDARY_EXAMPLES = 100
