"""
Serving — HTTP triggers for the sync workflows.
"""
