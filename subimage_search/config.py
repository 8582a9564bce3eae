"""Search settings and their defaults."""

from dataclasses import asdict, dataclass

# Defaults match the interactive tool: 1% maximum difference
DEFAULT_MAX_MSE = 0.01
DEFAULT_MAX_RESULTS = 10

# Result counts were stored as unsigned 16-bit values
MAX_RESULTS_LIMIT = 65535


@dataclass(frozen=True)
class SearchConfig:
    """User-facing search parameters."""
    max_mse: float = DEFAULT_MAX_MSE          # relative error tolerance, 0..1
    max_results: int = DEFAULT_MAX_RESULTS    # best matches to keep

    def __post_init__(self):
        if not 0.0 <= self.max_mse <= 1.0:
            raise ValueError(f"max_mse must be within [0, 1], got {self.max_mse}")
        if not 0 <= self.max_results <= MAX_RESULTS_LIMIT:
            raise ValueError(
                f"max_results must be within [0, {MAX_RESULTS_LIMIT}], got {self.max_results}"
            )

    @classmethod
    def from_percent(cls, max_diff_percent: float, max_results: int = DEFAULT_MAX_RESULTS) -> "SearchConfig":
        """Build a config from a maximum difference given in percent."""
        return cls(max_mse=max_diff_percent / 100.0, max_results=max_results)

    @property
    def max_diff_percent(self) -> float:
        return self.max_mse * 100.0

    def summary(self) -> str:
        return (
            f"Maximum difference: {self.max_diff_percent:.1f}%, "
            f"maximum results: {self.max_results}"
        )

    def to_dict(self) -> dict:
        return asdict(self)
