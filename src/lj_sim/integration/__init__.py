"""
Time integration module.
"""

from lj_sim.integration.leapfrog import LeapfrogIntegrator

__all__ = ['LeapfrogIntegrator']
