"""
Request orchestration: raw text in, vetted single-line command out.

Stages, in order:
    1. Length check on the raw request (no side effects)
    2. Input sanitization
    3. Encoding and injection checks on the raw request (audited)
    4. Sensitive-data scan (advisory, audited)
    5. Cache lookup
    6. On miss: rate limit, prompt, backend call, output sanitization
    7. Command validation (cache hits included)
    8. Best-effort cache write
    9. Command and performance audit events

The encoding and injection checks look at the raw request because
sanitization removes exactly the metacharacters they search for. The
generated command is never executed.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from askcmd.core.audit import AuditCategory, AuditLog, StageTimer
from askcmd.core.cache import Cache, make_cache_key
from askcmd.core.config import MultilinePolicy
from askcmd.core.console import get_logger
from askcmd.core.prompting import build_prompt, parse_error_sentinel
from askcmd.core.rate_limit import RateLimiter
from askcmd.core.result import (
    BackendError,
    DangerousCommandError,
    Err,
    InvalidInputError,
    Ok,
)
from askcmd.core.runtime import RuntimeContext
from askcmd.core.security import (
    CommandVerdict,
    SafetyWarning,
    find_injection_patterns,
    find_sensitive_info,
    generate_safety_warning,
    sanitize_input,
    sanitize_output,
    validate_command,
    validate_encoding,
)

logger = get_logger(__name__)


class Backend(Protocol):
    async def invoke(self, prompt: str) -> str: ...


@dataclass
class PipelineResult:
    """A command that passed every check, plus what the caller should show."""

    command: str
    cached: bool
    warning: SafetyWarning
    sensitive: list[str] = field(default_factory=list)
    timings: dict[str, float] = field(default_factory=dict)
    cache_key: str = ""


class CommandPipeline:
    """Run one request through sanitization, backend and validation.

    Args:
        cache: Command cache (``NullCache`` when caching is off).
        rate_limiter: Shared backend call limiter.
        backend: Anything with ``async invoke(prompt) -> str``; a BackendPool in production.
        audit: Audit log receiving security, command and performance events.
        safe_mode: Only accept read-only commands.
        max_input_length: Upper bound on the raw request length.
        multiline_policy: How multi-line backend output is collapsed.
        use_cache: Skip both cache lookup and cache write when False.
        prompt_builder: Renders the backend prompt; replaceable in tests.
    """

    def __init__(
        self,
        *,
        cache: Cache,
        rate_limiter: RateLimiter,
        backend: Backend,
        audit: AuditLog,
        safe_mode: bool = False,
        max_input_length: int = 500,
        multiline_policy: MultilinePolicy = MultilinePolicy.FIRST_LINE,
        use_cache: bool = True,
        prompt_builder: Callable[..., str] = build_prompt,
    ) -> None:
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.backend = backend
        self.audit = audit
        self.safe_mode = safe_mode
        self.max_input_length = max_input_length
        self.multiline_policy = multiline_policy
        self.use_cache = use_cache
        self._prompt_builder = prompt_builder

    def _security_event(self, event: str, **payload: object) -> None:
        self.audit.record(AuditCategory.SECURITY, event, **payload)

    def _check_request(self, raw: str) -> str:
        """Validate the raw request and return its sanitized form."""
        if len(raw) > self.max_input_length:
            raise InvalidInputError(
                f"Request is {len(raw)} characters; the limit is {self.max_input_length}",
                context={"length": len(raw), "limit": self.max_input_length},
            )

        match sanitize_input(raw, self.max_input_length):
            case Ok(value):
                sanitized = value
            case Err(error):
                raise error

        if not validate_encoding(raw):
            self._security_event("invalid_encoding", length=len(raw))
            raise InvalidInputError("Request contains malformed or disallowed characters")

        patterns = find_injection_patterns(raw)
        if patterns:
            self._security_event("injection_attempt", patterns=patterns, request=sanitized)
            raise InvalidInputError(
                "Request looks like a shell injection attempt",
                context={"patterns": ", ".join(patterns)},
            )
        return sanitized

    async def _generate(self, sanitized: str) -> str:
        self.rate_limiter.acquire()
        prompt = self._prompt_builder(sanitized, safe_mode=self.safe_mode)
        completion = await self.backend.invoke(prompt)

        command = sanitize_output(completion, self.multiline_policy)
        reason = parse_error_sentinel(command)
        if reason is not None:
            # The refusal is reported verbatim
            raise InvalidInputError(command, context={"reason": reason})
        if not command:
            raise BackendError("Backend output was empty after sanitization")
        return command

    def _validate(self, command: str, *, cached: bool) -> None:
        verdict, reason = validate_command(command, safe_mode=self.safe_mode)
        if verdict == CommandVerdict.ALLOWED:
            return
        self._security_event(
            "dangerous_command",
            command=command,
            verdict=verdict.name,
            reason=reason,
            safe_mode=self.safe_mode,
            cached=cached,
        )
        raise DangerousCommandError(
            f"Generated command rejected: {reason}",
            context={"verdict": verdict.name, "command": command},
        )

    async def run(self, raw: str) -> PipelineResult:
        """Turn ``raw`` into a validated command.

        Raises:
            InvalidInputError: Bad request or backend refusal.
            RateLimitedError: Too many backend calls in the window.
            BackendUnavailableError: Circuit breaker open.
            BackendTimeoutError: Backend did not answer in time.
            BackendNotFoundError: Backend executable missing.
            BackendError: Any other backend failure.
            DangerousCommandError: The command failed validation.
        """
        timer = StageTimer()

        with timer.stage("input"):
            sanitized = self._check_request(raw)
            sensitive = find_sensitive_info(raw)
        if sensitive:
            self._security_event("sensitive_data", kinds=sensitive)

        key = make_cache_key(sanitized, safe_mode=self.safe_mode)
        command: str | None = None
        cached = False
        if self.use_cache:
            with timer.stage("cache_lookup"):
                entry = self.cache.lookup(key)
            if entry is not None:
                command, cached = entry.command, True
                logger.debug("Cache hit for %s", key[:12])

        if command is None:
            with timer.stage("backend"):
                command = await self._generate(sanitized)

        with timer.stage("validate"):
            # Cache hits are re-validated: the rules or the mode may have changed
            self._validate(command, cached=cached)

        if not cached and self.use_cache:
            with timer.stage("cache_store"):
                self.cache.store(key, command)

        warning = generate_safety_warning(command)
        self.audit.record(
            AuditCategory.COMMAND,
            "command_generated",
            command=command,
            cached=cached,
            safe_mode=self.safe_mode,
            risk=warning.level.value,
        )
        self.audit.record(
            AuditCategory.PERFORMANCE,
            "request_timings",
            cached=cached,
            stages=timer.timings,
            total_ms=timer.total_ms(),
        )
        return PipelineResult(
            command=command,
            cached=cached,
            warning=warning,
            sensitive=sensitive,
            timings=dict(timer.timings),
            cache_key=key,
        )


def build_pipeline(
    runtime: RuntimeContext,
    *,
    safe_mode: bool | None = None,
    use_cache: bool = True,
) -> CommandPipeline:
    """Compose a pipeline from the runtime's shared components."""
    config = runtime.config
    return CommandPipeline(
        cache=runtime.get_cache(),
        rate_limiter=runtime.get_rate_limiter(),
        backend=runtime.get_backend(),
        audit=runtime.get_audit(),
        safe_mode=config.safe_mode if safe_mode is None else safe_mode,
        max_input_length=config.max_input_length,
        multiline_policy=config.backend.multiline_policy,
        use_cache=use_cache,
    )


__all__ = ["Backend", "CommandPipeline", "PipelineResult", "build_pipeline"]
