"""
Solver modules
"""

from .pnp_solver import PoseSolver, PoseSession

__all__ = [
    'PoseSolver',
    'PoseSession'
]
