"""
L0 Data — fixed tables used by the deployment engine.

Pure data.  No logic.
"""
