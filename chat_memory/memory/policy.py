"""
Reflection trigger policy.

Decides when a completed turn should kick off background reflection.
"""


class ReflectionPolicy:
    """
    Fire once every ``every_n`` assistant turns.

    Counts stored assistant turns directly, so system turns or gaps in
    ``order`` do not shift the schedule.
    """

    def __init__(self, every_n: int = 5, enabled: bool = True):
        """
        Initialize reflection policy.

        Args:
            every_n: Assistant turns between reflections (>= 1)
            enabled: Disable to never reflect
        """
        if every_n < 1:
            raise ValueError("every_n must be >= 1")
        self.every_n = every_n
        self.enabled = enabled

    def should_reflect(self, assistant_turn_count: int) -> bool:
        """
        Determine if reflection is due.

        Args:
            assistant_turn_count: Assistant turns stored so far, including
                the one just persisted

        Returns:
            True on every ``every_n``-th assistant turn
        """
        if not self.enabled or assistant_turn_count <= 0:
            return False
        return assistant_turn_count % self.every_n == 0
