"""
Combo Forge: computational core.

Leaves first:
- series: immutable OHLCV bars with sub-range views
- indicators: SMA / EMA / RSI / MACD / channel helpers on pandas
- strategies: six strategy kinds, typed parameters, sweeps, registry
- simulator: long-only trade state machine with stop / target / signal exits
- filters: stability gate and swing-trade score
- walk_forward: k-fold optimize-then-test protocol with overfit detection
- combinations: entry/exit subset search plus held-out check window

Design principles:
- Parameters are fit on the optimization window only
- Every fold is tested on bars the optimizer never saw
- A train/test return ratio far from 1.0 marks a fold as overfit
- The final pick is re-validated on the trailing window of the full series
"""
