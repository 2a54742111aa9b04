"""Tree ensembles: bootstrap aggregation and residual boosting."""

from __future__ import annotations

from costkit.ensemble.bagging import BaggedEnsemble, BaggedMember
from costkit.ensemble.boosting import BoostedEnsemble

__all__ = ["BaggedEnsemble", "BaggedMember", "BoostedEnsemble"]
