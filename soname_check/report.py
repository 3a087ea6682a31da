"""Aggregation of per-package check failures."""

from typing import Iterator, List, Optional, Sequence


class SonameCheckErrors(Exception):
    """Every failure collected during a run, in the order packages were checked.

    ``str()`` lists each contained error verbatim on its own line.
    """

    def __init__(self, errors: Sequence[BaseException]):
        self.errors: List[BaseException] = list(errors)
        super().__init__("\n".join(str(e) for e in self.errors))

    def __len__(self) -> int:
        return len(self.errors)

    def __iter__(self) -> Iterator[BaseException]:
        return iter(self.errors)


def wrap_errors(errors: Sequence[BaseException]) -> Optional[SonameCheckErrors]:
    """Combine errors into one exception, or None when there are none."""
    if not errors:
        return None
    return SonameCheckErrors(errors)
