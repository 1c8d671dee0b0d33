"""Error helpers: wrapping with causes, aggregates of several errors, and
running callables concurrently while collecting what they raise."""

from __future__ import annotations

import queue
import threading
import traceback
from collections.abc import Callable, Iterable, Iterator

ErrorTarget = BaseException | type[BaseException]


def _capture_stack() -> traceback.StackSummary:
    # drop the frames of the helper and of the constructor calling it
    return traceback.StackSummary.from_list(traceback.extract_stack()[:-2])


def _cause_chain(err: BaseException | None) -> Iterator[BaseException]:
    """Yield err and then each explicit cause below it, guarding against cycles."""
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__


def _is(err: BaseException | None, target: ErrorTarget) -> bool:
    """Report whether err, or anything in its cause chain, matches target."""
    for current in _cause_chain(err):
        if isinstance(target, type):
            if isinstance(current, target):
                return True
        elif current is target:
            return True
        if isinstance(current, AggregateError) and current.matches(target):
            return True
    return False


class _WrappedError(Exception):
    """An error annotated with a message, keeping the original as its cause."""

    def __init__(self, message: str, cause: BaseException) -> None:
        super().__init__(f"{message}: {cause}")
        self.__cause__ = cause
        self.stack = _capture_stack()


class AggregateError(Exception):
    """Several errors reported together without one singular meaning."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors: list[BaseException] = list(errors)
        super().__init__(self.errors)
        self.stack = _capture_stack()

    def _visit(self) -> Iterator[BaseException]:
        for err in self.errors:
            if isinstance(err, AggregateError):
                yield from err._visit()
            else:
                yield err

    def __str__(self) -> str:
        if not self.errors:
            return ""
        if len(self.errors) == 1:
            return str(self.errors[0])
        seen: dict[str, None] = {}
        for err in self._visit():
            seen.setdefault(str(err), None)
        result = ", ".join(seen)
        if len(seen) == 1:
            return result
        return f"[{result}]"

    def matches(self, target: ErrorTarget) -> bool:
        """Report whether any contained error is, or is caused by, target.

        target may be an exception instance or an exception class.
        """
        return any(_is(err, target) for err in self._visit())


def _new_aggregate(errlist: Iterable[BaseException | None] | None) -> AggregateError | None:
    errs = [err for err in (errlist or ()) if err is not None]
    if not errs:
        return None
    return AggregateError(errs)


def flatten(agg: AggregateError | None) -> AggregateError | None:
    """Flatten arbitrarily nested aggregates into a single aggregate."""
    if agg is None:
        return None
    result: list[BaseException] = []
    for err in agg.errors:
        if isinstance(err, AggregateError):
            flat = flatten(err)
            if flat is not None:
                result.extend(flat.errors)
        elif err is not None:
            result.append(err)
    return _new_aggregate(result)


def reduce(err: BaseException | None) -> BaseException | None:
    """Unwrap an aggregate holding a single error; an empty one becomes None."""
    if isinstance(err, AggregateError):
        if len(err.errors) == 1:
            return err.errors[0]
        if not err.errors:
            return None
    return err


def new_aggregate(errlist: Iterable[BaseException | None] | None) -> BaseException | None:
    """Build a flattened aggregate of the non-None errors.

    Returns None when there are none, and the error itself when there is one.
    """
    return reduce(flatten(_new_aggregate(errlist)))


def errors_of(err: BaseException | None) -> list[BaseException]:
    """Return the errors of the deepest aggregate in err's cause chain."""
    deepest: AggregateError | None = None
    for current in _cause_chain(err):
        if isinstance(current, AggregateError):
            deepest = current
    return list(deepest.errors) if deepest is not None else []


def wrap(err: BaseException | None, message: str) -> BaseException | None:
    """Annotate err with message, keeping err as the cause; None stays None."""
    if err is None:
        return None
    return _WrappedError(message, err)


def stack_trace(err: BaseException | None) -> traceback.StackSummary | None:
    """Return the deepest stack trace found in err's cause chain."""
    found: traceback.StackSummary | None = None
    for current in _cause_chain(err):
        stack = getattr(current, "stack", None)
        if isinstance(stack, traceback.StackSummary):
            found = stack
        elif current.__traceback__ is not None:
            found = traceback.extract_tb(current.__traceback__)
    return found


def _run_into(func: Callable[[], object], results: queue.SimpleQueue) -> None:
    try:
        func()
    except Exception as exc:  # collected and re-raised by the caller
        results.put(exc)
    else:
        results.put(None)


def until_error_concurrent(funcs: Iterable[Callable[[], object]]) -> None:
    """Run funcs in separate threads and raise the first error any of them raises.

    Returns as soon as an error arrives, without waiting for the rest.
    """
    funcs = list(funcs)
    results: queue.SimpleQueue = queue.SimpleQueue()
    for func in funcs:
        threading.Thread(target=_run_into, args=(func, results), daemon=True).start()
    for _ in funcs:
        exc = results.get()
        if exc is not None:
            raise exc


def aggregate_concurrent(funcs: Iterable[Callable[[], object]]) -> None:
    """Run funcs concurrently, wait for all, and raise what they raised.

    A single error is raised as is; several are raised as an aggregate.
    """
    results: queue.SimpleQueue = queue.SimpleQueue()
    threads = [threading.Thread(target=_run_into, args=(func, results)) for func in funcs]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    errs = [exc for exc in (results.get() for _ in threads) if exc is not None]
    if len(errs) > 1:
        aggregate = new_aggregate(errs)
        assert aggregate is not None
        raise aggregate
    if errs:
        raise errs[0]