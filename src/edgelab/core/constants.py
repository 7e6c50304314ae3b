"""
Core constants and limits.

Defines system-wide defaults and resource limits shared by the
simulation, optimization and validation layers.
"""

# Simulation
MIN_CANDLES_DEFAULT = 20  # Minimum candles required for a backtest
DEFAULT_INITIAL_CAPITAL = 10000.0
DEFAULT_POSITION_SIZE_PERCENT = 10.0
DEFAULT_MAX_DRAWDOWN_PERCENT = 25.0
DEFAULT_COMMISSION_PERCENT = 0.1  # 0.1% per side
DEFAULT_SLIPPAGE_PERCENT = 0.05  # 0.05% per side
MAX_LEVERAGE = 125.0

# Cost models
VOLUME_IMPACT_COEFFICIENT = 0.1  # Price impact per sqrt(participation)
REFERENCE_VOLATILITY_PERCENT = 2.0  # Bar range treated as "normal" volatility
COMMISSION_TIERS = (  # (minimum notional, commission percent)
    (0.0, 0.10),
    (10_000.0, 0.08),
    (100_000.0, 0.05),
    (1_000_000.0, 0.03),
)

# Annualization
TRADING_DAYS_PER_YEAR = 252
DAYS_PER_YEAR = 365
SECONDS_PER_DAY = 86400

# Optimization
MAX_GRID_COMBINATIONS = 10_000  # Grid search refuses larger spaces
FITNESS_CACHE_SIZE = 4096  # Memoized genetic fitness evaluations
DEFAULT_SENSITIVITY_STEPS = 10
MULTI_OBJECTIVE_DEFAULT_WEIGHTS = {  # Used when no weights are supplied
    "total_return_percent": 0.4,
    "sharpe_ratio": 0.3,
    "max_drawdown_percent": 0.2,
    "win_rate": 0.1,
}

# Validation
SIGNIFICANCE_ALPHA = 0.05
OVERFIT_EFFICIENCY_THRESHOLD = 0.5  # Test below half of train counts as overfit
MIN_CONSISTENCY_SCORE = 0.6
MIN_TRAIN_TEST_CORRELATION = 0.3
MAX_OVERFIT_PROBABILITY = 0.3
MAX_DEGRADATION_PERCENT = 50.0
MIN_FOLDS_FOR_SIGNIFICANCE = 5
MIN_TRADES_PER_FOLD = 30
FRAGILITY_THRESHOLD = 0.5  # Degradation beyond 50% of baseline return is fragile

# Monte Carlo
RUIN_THRESHOLD = 0.5  # Losing 50% of capital counts as ruin
TIMING_NOISE_FRACTION = 0.1  # Entry/exit jitter as a fraction of return dispersion
HISTOGRAM_BUCKETS = 10

# Portfolio
ALLOCATION_TOLERANCE = 0.01
DEFAULT_REBALANCE_COST_PERCENT = 0.1
DEFAULT_REBALANCE_THRESHOLD_PERCENT = 5.0

# Options
OPTION_CONTRACT_MULTIPLIER = 100
STRIKE_INCREMENT_PERCENT = 2.5
DEFAULT_VOLATILITY = 0.20
VOLATILITY_WINDOW = 20
DEFAULT_RISK_FREE_RATE = 0.05

# Position sizing
DEFAULT_MAX_POSITION_PERCENT = 25.0
DEFAULT_MIN_POSITION_PERCENT = 1.0
ATR_STOP_MULTIPLIER = 2.0
VOLATILITY_TARGET_CAP = 2.0  # Never more than 2x balance

# Result store
MAX_STORED_RESULTS = 10_000
