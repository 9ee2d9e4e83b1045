from __future__ import annotations

from typing import Callable, Optional, Sequence

from termcolor import colored


CANCEL_SENTINEL = "q!"
DEFAULT_MAX_ATTEMPTS = 5

InputFn = Callable[[str], str]


class PromptCancelled(Exception):
    """The operator cancelled an interactive prompt."""


class PromptExhausted(Exception):
    """The operator gave no acceptable answer within the allowed attempts."""


def _read(prompt: str, input_fn: InputFn) -> str:
    try:
        value = input_fn(prompt)
    except (EOFError, KeyboardInterrupt):
        raise PromptCancelled(prompt.strip()) from None
    value = (value or "").strip()
    if value == CANCEL_SENTINEL:
        raise PromptCancelled(prompt.strip())
    return value


def _reject(message: str) -> None:
    print(f"{colored('[-] ', 'red')}{message}")


def ask(
    prompt: str,
    *,
    validate: Callable[[str], bool],
    error: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    input_fn: Optional[InputFn] = None,
) -> str:
    """
    Prompt until `validate` accepts the (stripped) answer.

    Raises PromptCancelled on `q!`, EOF or Ctrl-C and PromptExhausted after
    `max_attempts` rejected answers.
    """
    input_fn = input_fn or input
    for attempt in range(1, max_attempts + 1):
        value = _read(prompt, input_fn)
        if validate(value):
            return value
        remaining = max_attempts - attempt
        if remaining:
            _reject(f"{error} ({remaining} attempt(s) left, '{CANCEL_SENTINEL}' to cancel)")
        else:
            _reject(error)
    raise PromptExhausted(f"No valid answer after {max_attempts} attempt(s): {prompt.strip()}")


def confirm(
    prompt: str,
    *,
    default: bool = False,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    input_fn: Optional[InputFn] = None,
) -> bool:
    input_fn = input_fn or input
    answers = {"y": True, "yes": True, "n": False, "no": False}
    value = ask(
        prompt,
        validate=lambda s: s == "" or s.lower() in answers,
        error="Please answer y or n",
        max_attempts=max_attempts,
        input_fn=input_fn,
    )
    if value == "":
        return default
    return answers[value.lower()]


def choose(
    title: str,
    options: Sequence[str],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    input_fn: Optional[InputFn] = None,
) -> int:
    """Print a numbered menu and return the 0-based index of the chosen option."""
    if not options:
        raise ValueError(f"Nothing to choose from: {title}")
    print(colored(title, "yellow", attrs=["bold"]) + ":")
    width = len(str(len(options)))
    for i, label in enumerate(options, 1):
        print(f"  {i:>{width}}. {label}")

    def valid(s: str) -> bool:
        return s.isdecimal() and 1 <= int(s) <= len(options)

    value = ask(
        f"Enter number (1-{len(options)}): ",
        validate=valid,
        error=f"Please enter a number between 1 and {len(options)}",
        max_attempts=max_attempts,
        input_fn=input_fn,
    )
    return int(value) - 1
