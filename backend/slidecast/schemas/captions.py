from pydantic import BaseModel, ConfigDict, model_validator


# =============================================================================
# Caption Schemas
# =============================================================================


class CaptionWord(BaseModel):
    """A single caption word with timing in seconds.

    Active over the half-open interval [start, end).
    """

    model_config = ConfigDict(frozen=True)

    word: str
    start: float
    end: float

    @model_validator(mode="after")
    def _check_interval(self) -> "CaptionWord":
        if self.start < 0:
            raise ValueError(f"start must be >= 0, got {self.start}")
        if not self.start < self.end:
            raise ValueError(f"start ({self.start}) must be before end ({self.end})")
        return self

    def is_active(self, t: float) -> bool:
        return self.start <= t < self.end
