"""Allocation statistics module."""

from .targets import target_allocation, bayesian_target, posterior_superiority, scope_target
from .biased_coin import biased_coin_probability, covariate_adjusted_probability
from .summary import build_arm_stats, summarize_scope
from .effects import mean_difference, treatment_effect

__all__ = [
    "target_allocation",
    "bayesian_target",
    "posterior_superiority",
    "scope_target",
    "biased_coin_probability",
    "covariate_adjusted_probability",
    "build_arm_stats",
    "summarize_scope",
    "mean_difference",
    "treatment_effect",
]
