class ChallengeError(Exception):
    pass


class ChallengeNotFound(ChallengeError):
    """No challenge matched (it does not exist, or the caller does not own it)."""


class InvalidTransition(ChallengeError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f'Cannot move challenge from {current!r} to {target!r}')
