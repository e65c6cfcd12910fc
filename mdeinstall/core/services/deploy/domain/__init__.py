"""
L1 Domain — pure deployment rules.

No I/O, no subprocess, no registry.
"""
