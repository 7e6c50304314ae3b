"""Out-of-sample validation: walk-forward, robustness and Monte Carlo analysis."""
