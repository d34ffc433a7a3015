"""
Pipelines — Kubeflow Pipelines (KFP v2) definitions for scheduled syncs.
"""
