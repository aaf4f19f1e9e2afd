from typing import List


class AggregateError(Exception):
    """Several independent items of one sync pass failed"""

    def __init__(self, errors: List[Exception]):
        self.errors = list(errors)
        if len(self.errors) == 1:
            message = str(self.errors[0])
        else:
            message = "[" + ", ".join(str(e) for e in self.errors) + "]"
        super().__init__(message)
