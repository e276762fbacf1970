"""
Combo Forge: walk-forward strategy-mix search engine.

Finds, validates and ranks entry/exit strategy combinations per symbol:
- Six classic technical strategy kinds with typed parameters
- Brute-force parameter sweeps on each optimization window
- K-fold walk-forward validation with overfit-ratio detection
- Combinatorial search over entry/exit strategy subsets
- Held-out check window scored against the walk-forward result
- Batch runs across a symbol universe on a bounded thread pool

Results are persisted per symbol and used to derive live BUY/SELL/HOLD
signals on the latest bar.
"""

__version__ = "0.1.0"
