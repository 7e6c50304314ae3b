"""Options pricing and options strategy backtesting."""
