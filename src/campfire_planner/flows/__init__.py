"""
Prefect flows for the forest data pipeline.

Flows:
- refresh: Rebuild the forest snapshot from the extraction outputs

Usage (local):
    python -m campfire_planner.flows.refresh

Usage (Prefect):
    prefect server start  # Optional, for dashboard
    prefect deployment run 'refresh-forests/default'
"""
