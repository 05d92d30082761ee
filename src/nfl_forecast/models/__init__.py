"""
Per-week estimators.

- logistic: gradient-descent logistic regression
- tree: CART with a recomputed leaf frequency table
- rating: Bradley-Terry pairwise ratings
- network: small MLP committee
- online: incremental logistic carried across weeks (reported, not blended)
- ensemble: trains all of the above in isolation for one week
"""

__all__: list[str] = []
