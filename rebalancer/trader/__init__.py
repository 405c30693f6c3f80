"""
Rebalancer orchestration package.

The entrypoint remains `main.py` at the repo root. The loop itself lives in
`rebalancer/trader/runner.py` to keep the entrypoint thin and testable.
"""
