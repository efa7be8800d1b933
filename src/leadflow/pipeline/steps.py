"""Step runners shared by the pipeline stages.

Stage methods take a ``step`` callable with the signature of
``JobContext.step``. Inside a job it checkpoints each step; outside a job
``run_directly`` simply awaits the function.
"""

from typing import Any, Awaitable, Callable

StepRunner = Callable[..., Awaitable[Any]]


async def run_directly(name: str, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
    """Run a step without checkpointing."""
    return await fn(*args, **kwargs)


def prefixed(step: StepRunner, prefix: str) -> StepRunner:
    """Namespace step names so a nested flow cannot collide with its caller."""

    async def run(name: str, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        return await step(f"{prefix}:{name}", fn, *args, **kwargs)

    return run
