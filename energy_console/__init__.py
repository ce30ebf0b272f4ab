"""
Energy Console

Operator console for a small renewable-energy testbed: discovers serial
devices, runs their commands, aggregates telemetry into a supply/demand
picture and balances it by commanding the generator.
"""

__version__ = "1.0.0"
