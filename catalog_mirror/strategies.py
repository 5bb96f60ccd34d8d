"""Named extraction strategies tried in priority order.

The supplier runs several page templates side by side, so every field is
read by a chain of small heuristics. The first strategy that returns a
non-empty value wins; which one won is logged so template drift shows up
in debug output instead of as silently empty fields.
"""

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, Sequence, Tuple, TypeVar

from catalog_mirror.logging_config import get_logger

__all__ = ["Strategy", "run_chain", "is_empty"]

logger = get_logger("strategies")

T = TypeVar("T")


@dataclass(frozen=True)
class Strategy(Generic[T]):
    name: str
    func: Callable[..., Optional[T]]

    def __call__(self, *args: Any, **kwargs: Any) -> Optional[T]:
        return self.func(*args, **kwargs)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def run_chain(
    field_name: str,
    chain: Sequence[Strategy],
    *args: Any,
    **kwargs: Any,
) -> Tuple[Optional[Any], Optional[str]]:
    """Run ``chain`` until a strategy yields something.

    Returns:
        ``(value, strategy_name)``, or ``(None, None)`` if every strategy
        came back empty
    """
    for strategy in chain:
        value = strategy(*args, **kwargs)
        if not is_empty(value):
            logger.debug(f"{field_name}: matched by '{strategy.name}'")
            return value, strategy.name
    logger.debug(f"{field_name}: no strategy matched")
    return None, None
