"""
Flow Service (Layer 4) - Scripted Command Sequences

Runs operator-authored step lists through the same execution pipeline
as ad hoc commands, and keeps a history of run summaries.
"""

from .runner import Flow, FlowMode, FlowRunner, FlowStep, RunStatus, RunSummary

__all__ = ["Flow", "FlowMode", "FlowRunner", "FlowStep", "RunStatus", "RunSummary"]
