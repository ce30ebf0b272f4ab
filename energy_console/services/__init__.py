"""
Energy Console Services

Layered service architecture:
1. Device Service - Serial I/O, discovery, per-device command queue
2. Telemetry Service - Periodic read-only sweeps and sanitizing
3. Balance Service - Power estimates, connection plan, Mode 2 controller
4. Flow Service - Scripted command sequences through the same pipeline
"""
