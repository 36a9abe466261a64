"""治理服務層。

將常用子模組提升到套件層級，以符合 `__all__` 並通過型別檢查器的名稱存在性檢查。
"""

from . import eligibility as eligibility  # noqa: F401
from . import proposal_service as proposal_service  # noqa: F401
from . import resolution as resolution  # noqa: F401

__all__ = ["eligibility", "proposal_service", "resolution"]
