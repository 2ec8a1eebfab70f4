"""
kpsfm

Structure from known poses: landmarks triangulated from feature matches
between views whose intrinsics and poses are fixed.

Entry points live in kpsfm.run_structure (library) and
scripts/compute_structure.py (command line).
"""

__version__ = "0.1.0"
